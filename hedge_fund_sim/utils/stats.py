"""
수익률 통계 헬퍼.

[ 역할 ]
    리스크 매니저와 백테스트 지표 계산이 같은 정의를 쓰도록
    표준편차, 낙폭, 공분산 등의 계산을 한 곳에 둔다.

[ 호출하는 곳 ]
    - risk/manager.py
    - backtest/metrics.py
    - engine/strategy_engine.py (최근 변동성)
"""

import math
from typing import Sequence

import numpy as np

TRADING_DAYS_PER_YEAR = 252

# 정규분포 근사 VaR용 z-score
Z_SCORES = {0.95: 1.645, 0.99: 2.326}


def z_score(confidence: float) -> float:
    """신뢰수준별 z-score. 95% → 1.645, 99% → 2.326, 그 외 1.96."""
    return Z_SCORES.get(confidence, 1.96)


def simple_returns(values: Sequence[float]) -> list[float]:
    """연속한 값 사이의 단순 수익률. 이전 값이 0 이하면 건너뛴다."""
    returns = []
    for prev, curr in zip(values[:-1], values[1:]):
        if prev > 0:
            returns.append((curr - prev) / prev)
    return returns


def sample_std(values: Sequence[float]) -> float:
    """표본 표준편차 (ddof=1). 값이 2개 미만이면 0."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1))


def annualize_volatility(daily_std: float) -> float:
    return daily_std * math.sqrt(TRADING_DAYS_PER_YEAR)


def drawdown_series(values: Sequence[float], initial_peak: float | None = None) -> list[float]:
    """각 시점의 고점 대비 낙폭 비율 (0 ~ 1). 고점은 누적 최대값."""
    peak = initial_peak if initial_peak is not None else (values[0] if values else 0.0)
    drawdowns = []
    for value in values:
        peak = max(peak, value)
        drawdowns.append((peak - value) / peak if peak > 0 else 0.0)
    return drawdowns


def max_drawdown(values: Sequence[float], initial_peak: float | None = None) -> float:
    """최대 낙폭 비율. 값이 없으면 0."""
    drawdowns = drawdown_series(values, initial_peak)
    return max(drawdowns) if drawdowns else 0.0


def covariance(a: Sequence[float], b: Sequence[float]) -> float:
    """표본 공분산 (ddof=1). 길이가 다르면 앞에서부터 짧은 쪽에 맞춘다."""
    n = min(len(a), len(b))
    if n < 2:
        return 0.0
    return float(np.cov(np.asarray(a[:n], dtype=float), np.asarray(b[:n], dtype=float), ddof=1)[0, 1])


def sharpe_ratio(annualized_return: float, annualized_volatility: float, risk_free_rate: float) -> float:
    """(연수익률 - 무위험수익률) / 연변동성. 변동성이 0이면 0."""
    if annualized_volatility <= 0:
        return 0.0
    return (annualized_return - risk_free_rate) / annualized_volatility
