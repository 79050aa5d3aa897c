"""
기술적 지표 모듈.

[ 역할 ]
    가격/거래량 시퀀스(오래된 순)를 받아 지표 값을 계산하는 순수 함수 모음.
    상태를 가지지 않으며, 입력 길이가 기간보다 짧으면 InsufficientData.

[ 제공 지표 ]
    sma / ema              이동평균
    rsi                    Wilder 평활 RSI (평균 손실 0 → 100)
    macd                   MACD 선 / 시그널 선 / 히스토그램
    bollinger_bands        볼린저 밴드 (모분산 기준 표준편차)
    stochastic             스토캐스틱 %K (고가=저가 구간 → 50)
    atr                    ATR (True Range의 단순 이동평균)
    ma_crossover           골든/데드 크로스 감지
    support_resistance     국소 저점/고점

[ 호출하는 곳 ]
    - strategies/ma_cross_strategy.py
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from hedge_fund_sim.core.exceptions import InsufficientData


@dataclass(frozen=True)
class MACDResult:
    macd_line: list[float]
    signal_line: list[float]
    histogram: list[float]


@dataclass(frozen=True)
class BollingerBands:
    upper: list[float]
    middle: list[float]
    lower: list[float]


@dataclass(frozen=True)
class Crossover:
    bullish: bool = False
    bearish: bool = False


@dataclass(frozen=True)
class SupportResistance:
    support: list[float]
    resistance: list[float]


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _require(length: int, required: int) -> None:
    if length < required:
        raise InsufficientData(required, length)


def _require_same_length(*series: Sequence[float]) -> None:
    lengths = {len(s) for s in series}
    if len(lengths) > 1:
        raise ValueError("High, low, and close series must have the same length")


def _rolling_windows(arr: np.ndarray, period: int) -> np.ndarray:
    return np.lib.stride_tricks.sliding_window_view(arr, period)


def sma(prices: Sequence[float], period: int) -> list[float]:
    """단순 이동평균. 길이 len(prices) - period + 1."""
    _require(len(prices), period)
    windows = _rolling_windows(_as_array(prices), period)
    return windows.mean(axis=1).tolist()


def ema(prices: Sequence[float], period: int) -> list[float]:
    """지수 이동평균. 첫 값은 처음 period개의 SMA."""
    _require(len(prices), period)
    arr = _as_array(prices)
    alpha = 2 / (period + 1)

    values = [float(arr[:period].mean())]
    for price in arr[period:]:
        values.append(float(price) * alpha + values[-1] * (1 - alpha))
    return values


def rsi(prices: Sequence[float], period: int = 14) -> list[float]:
    """RSI (0~100). period + 1개 이상의 가격 필요."""
    _require(len(prices), period + 1)
    changes = np.diff(_as_array(prices))
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    def _point(avg_gain: float, avg_loss: float) -> float:
        # 평균 손실이 0이면 RS가 무한대 → RSI 100
        if avg_loss == 0:
            return 100.0
        return 100 - 100 / (1 + avg_gain / avg_loss)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    values = [_point(avg_gain, avg_loss)]
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        values.append(_point(avg_gain, avg_loss))
    return values


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """MACD. macd_line은 느린 EMA의 시작 시점에 맞춘다."""
    if fast >= slow:
        raise ValueError("Fast period must be less than slow period")
    _require(len(prices), slow)

    fast_ema = ema(prices, fast)
    slow_ema = ema(prices, slow)
    offset = slow - fast
    macd_line = [f - s for f, s in zip(fast_ema[offset:], slow_ema)]

    signal_line = ema(macd_line, signal)
    start = len(macd_line) - len(signal_line)
    histogram = [m - s for m, s in zip(macd_line[start:], signal_line)]
    return MACDResult(macd_line=macd_line, signal_line=signal_line, histogram=histogram)


def bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    mult: float = 2.0,
) -> BollingerBands:
    """볼린저 밴드. 표준편차는 각 SMA와 같은 구간의 모분산(ddof=0)으로 계산."""
    _require(len(prices), period)
    windows = _rolling_windows(_as_array(prices), period)
    middle = windows.mean(axis=1)
    std = windows.std(axis=1, ddof=0)
    return BollingerBands(
        upper=(middle + mult * std).tolist(),
        middle=middle.tolist(),
        lower=(middle - mult * std).tolist(),
    )


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> list[float]:
    """스토캐스틱 %K. 구간 고가 == 저가이면 50."""
    _require_same_length(highs, lows, closes)
    _require(len(closes), period)

    highest = _rolling_windows(_as_array(highs), period).max(axis=1)
    lowest = _rolling_windows(_as_array(lows), period).min(axis=1)
    close = _as_array(closes)[period - 1:]

    values = []
    for c, hi, lo in zip(close, highest, lowest):
        span = hi - lo
        values.append(50.0 if span == 0 else float((c - lo) / span * 100))
    return values


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> list[float]:
    """ATR. True Range = max(고가-저가, |고가-전일종가|, |저가-전일종가|)."""
    _require_same_length(highs, lows, closes)
    _require(len(closes), period + 1)

    high = _as_array(highs)[1:]
    low = _as_array(lows)[1:]
    prev_close = _as_array(closes)[:-1]
    true_range = np.maximum.reduce([
        high - low,
        np.abs(high - prev_close),
        np.abs(low - prev_close),
    ])
    return sma(true_range, period)


def ma_crossover(
    fast: Sequence[float],
    slow: Sequence[float],
    lookback: int = 1,
) -> Crossover:
    """lookback 봉 전과 현재를 비교해 교차 여부 판단.

    길이가 다른 두 이동평균은 최근 시점 기준(오른쪽 정렬)으로 비교한다.
    """
    if len(fast) < lookback + 1 or len(slow) < lookback + 1:
        return Crossover()

    current_fast, current_slow = fast[-1], slow[-1]
    prev_fast, prev_slow = fast[-1 - lookback], slow[-1 - lookback]
    return Crossover(
        bullish=prev_fast <= prev_slow and current_fast > current_slow,
        bearish=prev_fast >= prev_slow and current_fast < current_slow,
    )


def support_resistance(
    highs: Sequence[float],
    lows: Sequence[float],
    period: int = 10,
) -> SupportResistance:
    """앞뒤 period 봉 안에서의 최저가(지지)/최고가(저항).

    다른 지표와 달리 데이터가 2 * period + 1개 미만이면 예외 대신 빈 목록.
    """
    _require_same_length(highs, lows)
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")
    if len(lows) < 2 * period + 1:
        return SupportResistance(support=[], resistance=[])

    low_arr = _as_array(lows)
    high_arr = _as_array(highs)
    low_windows = _rolling_windows(low_arr, 2 * period + 1)
    high_windows = _rolling_windows(high_arr, 2 * period + 1)
    centers = range(period, len(low_arr) - period)

    support = [
        float(low_arr[i]) for i, w in zip(centers, low_windows) if low_arr[i] == w.min()
    ]
    resistance = [
        float(high_arr[i]) for i, w in zip(centers, high_windows) if high_arr[i] == w.max()
    ]
    return SupportResistance(support=support, resistance=resistance)
