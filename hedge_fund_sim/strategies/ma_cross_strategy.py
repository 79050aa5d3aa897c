"""
이동평균 교차(MA Cross) 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    "빠른 이동평균이 느린 이동평균을 상향 돌파하면 매수(골든 크로스),
     하향 돌파하면 매도(데드 크로스)"

[ 판단 순서 ]
    analyze() 호출 시 (← engine/strategy_engine.py, backtest/engine.py)
        ├── 거래량 < min_volume          → HOLD (신뢰도 0)
        ├── 골든 크로스                   → BUY  (신뢰도 최소 0.6)
        ├── 데드 크로스 + 보유 중         → SELL (전량)
        ├── 빠른MA > 느린MA, 미보유, 추세강도 > 2%  → BUY (소량, 신뢰도 ×0.7)
        ├── 빠른MA < 느린MA, 보유 중, 추세강도 > 2% → SELL (절반, 신뢰도 ×0.6)
        └── 그 외                         → HOLD

[ 신뢰도 ]
    추세강도 = |빠른MA - 느린MA| / 현재가 * 100 (%)
    기본 신뢰도 = min(추세강도 / 2, 0.8) × min(거래량 비율, 1.5)
    거래량 비율 = 당일 거래량 / 최근 10일 평균. 최종 신뢰도는 0.8을 넘지 않는다.

[ 파라미터 (config.yaml의 strategy 섹션에서 로드) ]
    fast_period:           빠른 이동평균 기간 (>= 5)
    slow_period:           느린 이동평균 기간 (>= 10, fast_period보다 커야 함)
    min_volume:            최소 거래량 (0이면 필터 없음)
    min_confidence:        실행 최소 신뢰도
    max_position_fraction: 자본 대비 최대 포지션 비율
"""

import logging
from typing import Any

import pandas as pd

from hedge_fund_sim.core.exceptions import InsufficientData
from hedge_fund_sim.core.trading_strategy import (
    SignalAction,
    TradeSignal,
    TradingStrategy,
)
from hedge_fund_sim.indicators.technical import ma_crossover, sma
from hedge_fund_sim.strategies import register

logger = logging.getLogger("hedge_fund_sim.strategies")

MAX_CONFIDENCE = 0.8
CROSSOVER_MIN_CONFIDENCE = 0.6
TREND_THRESHOLD_PCT = 2.0
VOLUME_LOOKBACK = 10


@register("ma_cross")
class MACrossStrategy(TradingStrategy):
    """이동평균 교차 전략 구현체."""

    strategy_type = "moving-average"

    DEFAULT_PARAMS = {
        "fast_period": 20,
        "slow_period": 50,
        "min_volume": 0,
        "min_confidence": 0.6,
        "max_position_fraction": 0.3,
        "is_active": True,
    }

    PRESETS = {
        "conservative": {
            "fast_period": 50,
            "slow_period": 200,
            "min_volume": 200_000,
            "min_confidence": 0.7,
            "max_position_fraction": 0.15,
        },
        "standard": {
            "fast_period": 20,
            "slow_period": 50,
            "min_volume": 100_000,
            "min_confidence": 0.6,
            "max_position_fraction": 0.3,
        },
        "aggressive": {
            "fast_period": 10,
            "slow_period": 30,
            "min_volume": 50_000,
            "min_confidence": 0.5,
            "max_position_fraction": 0.5,
        },
    }

    def __init__(self, params: dict[str, Any] | None = None):
        merged = {**self.DEFAULT_PARAMS, **(params or {})}
        name = merged.pop("name", None) or f"MA {merged['fast_period']}/{merged['slow_period']}"
        super().__init__(name=name, params=merged)

    @classmethod
    def conservative(cls, **overrides: Any) -> "MACrossStrategy":
        return cls({**cls.PRESETS["conservative"], **overrides})

    @classmethod
    def standard(cls, **overrides: Any) -> "MACrossStrategy":
        return cls({**cls.PRESETS["standard"], **overrides})

    @classmethod
    def aggressive(cls, **overrides: Any) -> "MACrossStrategy":
        return cls({**cls.PRESETS["aggressive"], **overrides})

    @property
    def fast_period(self) -> int:
        return int(self.params["fast_period"])

    @property
    def slow_period(self) -> int:
        return int(self.params["slow_period"])

    @property
    def min_volume(self) -> int:
        return int(self.params["min_volume"] or 0)

    @property
    def min_history(self) -> int:
        # 느린 MA 기간 + 교차 판단용 여유분
        return self.slow_period + 5

    @property
    def description(self) -> str:
        return (
            f"{self.fast_period}일/{self.slow_period}일 이동평균 골든/데드 크로스 전략. "
            "상향 교차 시 매수, 하향 교차 시 매도."
        )

    def validate_params(self) -> None:
        if self.fast_period >= self.slow_period:
            raise ValueError("Fast period must be less than slow period")
        if self.fast_period < 5 or self.slow_period < 10:
            raise ValueError("Periods too short: fast >= 5, slow >= 10")
        if self.min_volume < 0:
            raise ValueError("Minimum volume cannot be negative")

    def analyze(
        self,
        ticker: str,
        price_history: pd.DataFrame,
        current_position: int = 0,
    ) -> TradeSignal:
        """매매 시그널 생성."""
        if len(price_history) < self.min_history:
            raise InsufficientData(self.min_history, len(price_history), what=f"{ticker} bars")

        closes = price_history["close"].astype(float).tolist()
        volumes = price_history["volume"].astype(float).tolist()
        current_price = closes[-1]
        current_volume = volumes[-1]

        fast_ma = sma(closes, self.fast_period)
        slow_ma = sma(closes, self.slow_period)
        crossover = ma_crossover(fast_ma, slow_ma, lookback=1)
        current_fast = fast_ma[-1]
        current_slow = slow_ma[-1]

        if self.min_volume and current_volume < self.min_volume:
            return TradeSignal.hold(
                f"거래량 부족 ({current_volume:,.0f} < {self.min_volume:,})",
                fast_ma=current_fast,
                slow_ma=current_slow,
                volume=current_volume,
                min_volume=float(self.min_volume),
            )

        trend_strength = abs(current_fast - current_slow) / current_price * 100
        confidence = min(trend_strength / 2, MAX_CONFIDENCE)
        if len(volumes) >= VOLUME_LOOKBACK:
            avg_volume = sum(volumes[-VOLUME_LOOKBACK:]) / VOLUME_LOOKBACK
            if avg_volume > 0:
                confidence *= min(current_volume / avg_volume, 1.5)

        action = SignalAction.HOLD
        position_fraction = 0.25
        stop_loss = None
        take_profit = None

        if crossover.bullish:
            action = SignalAction.BUY
            reason = "골든 크로스 (빠른 MA 상향 돌파)"
            confidence = max(confidence, CROSSOVER_MIN_CONFIDENCE)
            stop_loss = current_slow * 0.95
            take_profit = current_price * 1.1
            if trend_strength > 3:
                position_fraction = 0.4
        elif crossover.bearish:
            if current_position > 0:
                action = SignalAction.SELL
                reason = "데드 크로스 (빠른 MA 하향 돌파)"
                confidence = max(confidence, CROSSOVER_MIN_CONFIDENCE)
                position_fraction = 1.0
            else:
                reason = "데드 크로스 발생, 매도할 보유 수량 없음"
        elif current_fast > current_slow:
            if current_position == 0 and trend_strength > TREND_THRESHOLD_PCT:
                action = SignalAction.BUY
                reason = "강한 상승 추세 지속"
                confidence *= 0.7
                position_fraction = 0.2
            else:
                reason = "상승 추세 - 현재 포지션 유지"
        elif current_fast < current_slow:
            if current_position > 0 and trend_strength > TREND_THRESHOLD_PCT:
                action = SignalAction.SELL
                reason = "강한 하락 추세 - 포지션 절반 정리"
                confidence *= 0.6
                position_fraction = 0.5
            else:
                reason = "하락 추세 - 신규 진입 회피"
        else:
            reason = "이동평균 수렴 - 방향성 없음"

        confidence = max(0.0, min(MAX_CONFIDENCE, confidence))

        signal = TradeSignal(
            action=action,
            confidence=confidence,
            suggested_position_fraction=position_fraction,
            stop_loss=stop_loss,
            take_profit=take_profit,
            rationale=reason,
            indicator_snapshot={
                "fast_ma": current_fast,
                "slow_ma": current_slow,
                "trend_strength": trend_strength,
                "volume": current_volume,
                "bullish_crossover": 1.0 if crossover.bullish else 0.0,
                "bearish_crossover": 1.0 if crossover.bearish else 0.0,
            },
        )
        logger.debug(f"{self.name} {ticker}: {action.value} ({confidence:.3f}) - {reason}")
        return signal
