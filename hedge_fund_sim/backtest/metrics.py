"""
백테스트 성과 지표 계산 모듈.

[ 역할 ]
    백테스트 결과(거래기록 + 자산 곡선)를 받아 성과/리스크/벤치마크 지표를 계산.
    모든 수익률·비율은 소수(0.1 = 10%)로 저장하고 리포트 출력 시에만 %로 변환.

[ 계산하는 지표 ]
    PerformanceMetrics   - 총/연환산 수익률, 변동성, 샤프, MDD, 칼마,
                           승률, 평균 거래 수익률, 수익 팩터, 연속 승/패
    BacktestRiskMetrics  - 95% VaR(역사적), Expected Shortfall,
                           최대 일간 손실, 하방 편차
    BenchmarkMetrics     - 벤치마크 수익률/변동성/샤프, 베타, 알파

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run_backtest() 완료 시 호출
    - backtest/engine.py::generate_summary()에서 render_summary() 호출

[ 입력 데이터 ]
    - trades: data/portfolio.py::Portfolio.trade_history (매도 거래의 FIFO 실현 손익 분석)
    - daily_returns: 자산 곡선의 일간 수익률 (첫 시점은 초기 자본 대비)
"""

import math
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from hedge_fund_sim.data.portfolio import TradeRecord
from hedge_fund_sim.utils.stats import (
    TRADING_DAYS_PER_YEAR,
    annualize_volatility,
    covariance,
    sample_std,
    sharpe_ratio,
    simple_returns,
)

DAYS_PER_YEAR = 365.25
VAR_PERCENTILE = 0.05


@dataclass
class PerformanceMetrics:
    """백테스트 성과 지표."""
    total_return: float = 0.0         # 총 수익률
    annualized_return: float = 0.0    # 연환산 수익률
    volatility: float = 0.0           # 연환산 변동성
    sharpe_ratio: float = 0.0         # 샤프 비율 (1 이상 양호)
    max_drawdown: float = 0.0         # 최대 낙폭 MDD
    calmar_ratio: float = 0.0         # 연수익률 / MDD
    win_rate: float = 0.0             # 승률 (매도 기준)
    avg_trade_return: float = 0.0     # 매도 거래의 평균 실현 수익률
    profit_factor: float = 0.0        # 총이익 / 총손실 (1 이상이면 수익)
    total_trades: int = 0             # 매도 거래 횟수
    winning_trades: int = 0
    losing_trades: int = 0
    avg_profit: float = 0.0           # 수익 거래 평균 이익 ($)
    avg_loss: float = 0.0             # 손실 거래 평균 손실 ($)
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON 호환 딕셔너리. 손실 거래가 없어 profit_factor가 inf면 None."""
        data = asdict(self)
        if not math.isfinite(self.profit_factor):
            data["profit_factor"] = None
        return data


@dataclass
class BacktestRiskMetrics:
    """자산 곡선의 일간 수익률로 계산한 리스크 지표 (모두 양수 크기)."""
    value_at_risk: float = 0.0        # 95%, 역사적 방식
    expected_shortfall: float = 0.0
    max_daily_loss: float = 0.0
    downside_deviation: float = 0.0   # 연환산

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BenchmarkMetrics:
    ticker: str
    total_return: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    beta: float = 1.0
    alpha: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def annualize_return(total_return: float, days: float) -> float:
    """(1 + 총수익률)^(365.25 / 일수) - 1. 기간이 0이면 0."""
    if days <= 0:
        return 0.0
    if total_return <= -1:
        return -1.0
    return (1 + total_return) ** (DAYS_PER_YEAR / days) - 1


def calculate_performance(
    trades: list[TradeRecord],
    values: Sequence[float],
    daily_returns: Sequence[float],
    drawdowns: Sequence[float],
    initial_capital: float,
    start: date,
    end: date,
    risk_free_rate: float = 0.02,
) -> PerformanceMetrics:
    """성과 지표 계산. engine.py에서 백테스트 완료 후 호출됨.

    Args:
        trades: Portfolio.trade_history (매수+매도 전체)
        values: 일별 총 자산 (현금 + 보유종목 평가)
        daily_returns: 일별 수익률 (첫 시점은 초기 자본 대비)
        drawdowns: 일별 고점 대비 낙폭
        initial_capital: 초기 자금
        start, end: 자산 곡선의 첫/마지막 날짜
    """
    metrics = PerformanceMetrics()

    if not values:
        return metrics

    # ─── 수익률 ──────────────────────────────────────────────────────────
    metrics.total_return = (values[-1] - initial_capital) / initial_capital
    metrics.annualized_return = annualize_return(metrics.total_return, (end - start).days)

    # ─── 변동성 / 샤프 / MDD ─────────────────────────────────────────────
    metrics.volatility = annualize_volatility(sample_std(daily_returns))
    metrics.sharpe_ratio = sharpe_ratio(metrics.annualized_return, metrics.volatility, risk_free_rate)
    metrics.max_drawdown = max(drawdowns) if drawdowns else 0.0
    if metrics.max_drawdown > 0:
        metrics.calmar_ratio = metrics.annualized_return / metrics.max_drawdown

    # ─── 거래 기반 지표 (매도 거래만 분석) ────────────────────────────────
    # 매도 시 FIFO로 청산된 lot과 짝지어 실현 손익이 기록됨
    sell_trades = [t for t in trades if t.side == "SELL"]
    metrics.total_trades = len(sell_trades)

    if sell_trades:
        profits = [t.realized_pnl for t in sell_trades]
        winners = [p for p in profits if p > 0]
        losers = [p for p in profits if p <= 0]

        metrics.winning_trades = len(winners)
        metrics.losing_trades = len(losers)
        metrics.win_rate = len(winners) / len(sell_trades)
        metrics.avg_trade_return = sum(t.realized_pnl_pct for t in sell_trades) / len(sell_trades)

        if winners:
            metrics.avg_profit = sum(winners) / len(winners)
        if losers:
            metrics.avg_loss = sum(losers) / len(losers)

        total_profit = sum(winners) if winners else 0
        total_loss = abs(sum(losers)) if losers else 0
        metrics.profit_factor = total_profit / total_loss if total_loss > 0 else float("inf")

        # 연속 승패
        consecutive_wins = 0
        consecutive_losses = 0
        max_wins = 0
        max_losses = 0
        for p in profits:
            if p > 0:
                consecutive_wins += 1
                consecutive_losses = 0
                max_wins = max(max_wins, consecutive_wins)
            else:
                consecutive_losses += 1
                consecutive_wins = 0
                max_losses = max(max_losses, consecutive_losses)
        metrics.max_consecutive_wins = max_wins
        metrics.max_consecutive_losses = max_losses

    return metrics


def calculate_risk_metrics(daily_returns: Sequence[float]) -> BacktestRiskMetrics:
    """역사적 VaR/ES, 최대 일간 손실, 하방 편차."""
    metrics = BacktestRiskMetrics()
    if not daily_returns:
        return metrics

    sorted_returns = sorted(daily_returns)
    var_index = int(math.floor(len(sorted_returns) * VAR_PERCENTILE))
    metrics.value_at_risk = abs(sorted_returns[var_index])

    # VaR 이하 꼬리 구간 평균
    tail = sorted_returns[:var_index + 1]
    metrics.expected_shortfall = abs(sum(tail) / len(tail))

    metrics.max_daily_loss = max(0.0, -sorted_returns[0])

    # 평균 미만 수익률의 모분산 → 연환산
    returns = np.asarray(daily_returns, dtype=float)
    mean = returns.mean()
    downside = returns[returns < mean]
    if downside.size:
        downside_variance = float(np.mean((downside - mean) ** 2))
        metrics.downside_deviation = math.sqrt(downside_variance * TRADING_DAYS_PER_YEAR)

    return metrics


def calculate_benchmark(
    ticker: str,
    benchmark: pd.DataFrame,
    portfolio_returns: dict[date, float],
    portfolio_annualized_return: float,
    risk_free_rate: float = 0.02,
) -> BenchmarkMetrics:
    """벤치마크 대비 지표. 베타는 날짜가 겹치는 일간 수익률로만 계산.

    Args:
        benchmark: 벤치마크 OHLCV (기간 내, 오래된 순, 비어있지 않음)
        portfolio_returns: {날짜: 포트폴리오 일간 수익률}
    """
    closes = benchmark["close"].astype(float).tolist()
    dates = list(benchmark["date"])

    metrics = BenchmarkMetrics(ticker=ticker)
    metrics.total_return = (closes[-1] - closes[0]) / closes[0]
    metrics.annualized_return = annualize_return(metrics.total_return, (dates[-1] - dates[0]).days)

    bench_returns = simple_returns(closes)
    metrics.volatility = annualize_volatility(sample_std(bench_returns))
    metrics.sharpe_ratio = sharpe_ratio(metrics.annualized_return, metrics.volatility, risk_free_rate)

    # 같은 날짜끼리 정렬
    bench_by_date = dict(zip(dates[1:], bench_returns))
    common = [d for d in portfolio_returns if d in bench_by_date]
    aligned_portfolio = [portfolio_returns[d] for d in common]
    aligned_bench = [bench_by_date[d] for d in common]

    bench_variance = sample_std(aligned_bench) ** 2
    if bench_variance > 0:
        metrics.beta = covariance(aligned_portfolio, aligned_bench) / bench_variance
    else:
        metrics.beta = 1.0

    metrics.alpha = portfolio_annualized_return - (
        risk_free_rate + metrics.beta * (metrics.annualized_return - risk_free_rate)
    )
    return metrics


def render_summary(
    strategy_name: str,
    start: date,
    end: date,
    initial_capital: float,
    final_value: float,
    performance: PerformanceMetrics,
    risk: BacktestRiskMetrics,
    benchmark: Optional[BenchmarkMetrics] = None,
) -> str:
    """고정 섹션(수익률/리스크/거래 통계/벤치마크) 리포트 문자열."""
    profit_factor = (
        "inf" if math.isinf(performance.profit_factor) else f"{performance.profit_factor:.2f}"
    )
    lines = [
        "=" * 50,
        f"백테스트 성과 리포트: {strategy_name}",
        "=" * 50,
        f"기간:            {start} ~ {end}",
        f"초기 자본:       ${initial_capital:>14,.2f}",
        f"최종 자산:       ${final_value:>14,.2f}",
        "-" * 50,
        "[ 수익률 ]",
        f"총 수익률:       {performance.total_return * 100:>10.2f}%",
        f"연환산 수익률:    {performance.annualized_return * 100:>10.2f}%",
        f"평균 거래 수익률: {performance.avg_trade_return * 100:>10.2f}%",
        "-" * 50,
        "[ 리스크 지표 ]",
        f"변동성:          {performance.volatility * 100:>10.2f}%",
        f"샤프 비율:       {performance.sharpe_ratio:>10.3f}",
        f"최대 낙폭(MDD):  {performance.max_drawdown * 100:>10.2f}%",
        f"칼마 비율:       {performance.calmar_ratio:>10.3f}",
        f"VaR (95%):       {risk.value_at_risk * 100:>10.2f}%",
        f"Expected Shortfall: {risk.expected_shortfall * 100:>7.2f}%",
        f"최대 일간 손실:  {risk.max_daily_loss * 100:>10.2f}%",
        f"하방 편차:       {risk.downside_deviation * 100:>10.2f}%",
        "-" * 50,
        "[ 거래 통계 ]",
        f"총 거래 횟수:    {performance.total_trades:>10d}",
        f"승률:            {performance.win_rate * 100:>10.2f}%",
        f"수익 거래:       {performance.winning_trades:>10d}",
        f"손실 거래:       {performance.losing_trades:>10d}",
        f"평균 수익:       ${performance.avg_profit:>10,.2f}",
        f"평균 손실:       ${performance.avg_loss:>10,.2f}",
        f"수익 팩터:       {profit_factor:>10}",
        f"최대 연속 수익:  {performance.max_consecutive_wins:>10d}",
        f"최대 연속 손실:  {performance.max_consecutive_losses:>10d}",
    ]
    if benchmark is not None:
        lines += [
            "-" * 50,
            f"[ 벤치마크 비교: {benchmark.ticker} ]",
            f"전략 연수익률:   {performance.annualized_return * 100:>10.2f}%",
            f"벤치마크 연수익률: {benchmark.annualized_return * 100:>8.2f}%",
            f"알파:            {benchmark.alpha * 100:>10.2f}%",
            f"베타:            {benchmark.beta:>10.2f}",
        ]
    lines.append("=" * 50)
    return "\n".join(lines)
