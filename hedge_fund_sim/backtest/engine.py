"""
백테스팅 엔진 모듈.

[ 역할 ]
    과거 데이터에 전략을 적용하여 가상 매매를 시뮬레이션하고 성과를 측정.
    시스템의 핵심 실행 루프를 담당.

[ 상태 ]
    INITIALIZING → RUNNING (거래일마다 1회 반복) → COMPLETE
    데이터 오류 시 FAILED, 취소 요청 시 CANCELLED.

[ 실행 흐름 ]
    run_backtest() 호출 시:
        1. 입력 검증 (기간, 종목, 벤치마크 데이터)
        2. [start_date, end_date] 안의 모든 종목 거래일 합집합 추출
        3. 각 거래일에 대해 _simulate_day() 호출
           → 당일 종가로 보유 lot 평가 (거래 전 자산)
           → 종목별로 당일까지의 이력으로 strategy.analyze() 호출
           → HOLD가 아니면 수량 계산 후 _execute_buy/sell() 실행
        4. 거래 후 자산으로 자산 곡선(EquityPoint) 기록
        5. metrics.py로 성과/리스크/벤치마크 지표 계산

[ 취소 ]
    cancel_event(threading.Event)는 거래일 사이에서만 확인한다.
    하루 도중의 상태는 외부에 노출되지 않는다.

[ 의존성 ]
    - core/data_provider.py::PriceHistoryProvider (주가 이력)
    - core/trading_strategy.py::TradingStrategy (전략 인터페이스)
    - data/portfolio.py::Portfolio (현금/lot/거래기록 관리)
    - backtest/metrics.py (성과 계산, 리포트)

[ 호출하는 곳 ]
    - run_backtest.py (진입점)에서 생성 및 실행
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

import pandas as pd

from hedge_fund_sim.backtest.metrics import (
    BacktestRiskMetrics,
    BenchmarkMetrics,
    PerformanceMetrics,
    calculate_benchmark,
    calculate_performance,
    calculate_risk_metrics,
    render_summary,
)
from hedge_fund_sim.core.data_provider import PriceHistoryProvider
from hedge_fund_sim.core.exceptions import BacktestCancelled, BacktestError, InsufficientData
from hedge_fund_sim.core.trading_strategy import SignalAction, TradeSignal, TradingStrategy
from hedge_fund_sim.data.portfolio import Portfolio, TradeRecord
from hedge_fund_sim.utils.config import BacktestConfig, RiskLimits

logger = logging.getLogger("hedge_fund_sim.backtest")


class BacktestState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EquityPoint:
    """자산 곡선의 하루치 기록 (거래 후 기준)."""
    date: date
    portfolio_value: float
    cash: float
    open_quantities: dict[str, int]
    daily_return: float
    cumulative_return: float
    drawdown: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "portfolio_value": round(self.portfolio_value, 2),
            "cash": round(self.cash, 2),
            "open_quantities": dict(self.open_quantities),
            "daily_return": round(self.daily_return, 6),
            "cumulative_return": round(self.cumulative_return, 6),
            "drawdown": round(self.drawdown, 6),
        }


@dataclass
class BacktestResult:
    """run_backtest()의 반환값. 완료 후에는 변경하지 않는다."""
    config: BacktestConfig
    strategy_name: str
    tickers: list[str]
    equity_curve: list[EquityPoint]
    trades: list[TradeRecord]
    performance: PerformanceMetrics
    risk_metrics: BacktestRiskMetrics
    benchmark: Optional[BenchmarkMetrics] = None
    state: BacktestState = BacktestState.COMPLETE

    @property
    def final_value(self) -> float:
        return self.equity_curve[-1].portfolio_value if self.equity_curve else self.config.initial_capital

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": {
                "strategy_name": self.strategy_name,
                "start_date": str(self.config.start_date),
                "end_date": str(self.config.end_date),
                "initial_capital": round(self.config.initial_capital, 2),
                "commission": round(self.config.commission, 2),
                "slippage": self.config.slippage,
                "benchmark_ticker": self.config.benchmark_ticker,
                "tickers": list(self.tickers),
            },
            "state": self.state.value,
            "equity_curve": [p.to_dict() for p in self.equity_curve],
            "trades": [t.to_dict() for t in self.trades],
            "performance": self.performance.to_dict(),
            "risk_metrics": self.risk_metrics.to_dict(),
            "benchmark": self.benchmark.to_dict() if self.benchmark else None,
        }


def _to_date(value, parameter: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise BacktestError(f"잘못된 날짜 형식: {value!r}", parameter) from e


class BacktestEngine:
    """백테스팅 엔진. run_backtest()로 시뮬레이션 실행.

    매수 수량은 거래 전 자산 × max_position_fraction × 신뢰도와
    현금 × (1 - min_cash_reserve_fraction) 중 작은 금액으로 계산한다.
    """

    def __init__(
        self,
        price_provider: PriceHistoryProvider,
        risk_limits: RiskLimits | None = None,
    ):
        self.provider = price_provider
        self.risk_limits = risk_limits or RiskLimits()
        self.state = BacktestState.INITIALIZING

    def run_backtest(
        self,
        strategy: TradingStrategy,
        config: BacktestConfig,
        tickers: list[str],
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        """백테스트 실행.

        Args:
            strategy: 매매 전략
            config: 기간, 초기 자본, 수수료, 슬리피지, 벤치마크
            tickers: 대상 종목 목록
            cancel_event: set() 되면 다음 거래일 시작 전에 중단

        Raises:
            BacktestError: 거래일 없음, 알 수 없는 종목, 벤치마크 데이터 없음
            BacktestCancelled: 취소 요청
        """
        self.state = BacktestState.INITIALIZING
        try:
            result = self._run(strategy, config, tickers, cancel_event)
        except BacktestCancelled:
            self.state = BacktestState.CANCELLED
            logger.warning("백테스트가 취소되었습니다.")
            raise
        except Exception:
            self.state = BacktestState.FAILED
            raise
        self.state = BacktestState.COMPLETE
        return result

    def _run(
        self,
        strategy: TradingStrategy,
        config: BacktestConfig,
        tickers: list[str],
        cancel_event: threading.Event | None,
    ) -> BacktestResult:
        start = _to_date(config.start_date, "start_date")
        end = _to_date(config.end_date, "end_date")
        if start > end:
            raise BacktestError(f"시작일({start})이 종료일({end})보다 늦습니다", "start_date/end_date")
        if config.initial_capital <= 0:
            raise BacktestError("초기 자본은 0보다 커야 합니다", "initial_capital")
        if not tickers:
            raise BacktestError("종목이 지정되지 않았습니다", "tickers")

        available = set(self.provider.get_tickers())
        unknown = [t for t in tickers if t not in available]
        if unknown:
            raise BacktestError(f"알 수 없는 종목: {', '.join(unknown)}", "tickers")

        benchmark_data = None
        if config.benchmark_ticker:
            benchmark_data = self._load_benchmark(config.benchmark_ticker, start, end)

        # 전체 거래일 추출
        all_dates: set[date] = set()
        for ticker in tickers:
            all_dates.update(self.provider.get_ohlcv(ticker, start, end)["date"])
        trading_dates = sorted(all_dates)

        if not trading_dates:
            raise BacktestError(f"{start} ~ {end} 기간에 거래일이 없습니다", "start_date/end_date")

        logger.info(
            f"백테스트 시작: {strategy.name} {tickers} "
            f"{trading_dates[0]} ~ {trading_dates[-1]} ({len(trading_dates)}일)"
        )
        logger.info(f"전략 설명: {strategy.description}")

        self.state = BacktestState.RUNNING
        portfolio = Portfolio(config.initial_capital)
        window = max(strategy.min_history, config.history_window)
        last_close: dict[str, float] = {}   # 종목별 마지막 종가 (평가용)
        equity_curve: list[EquityPoint] = []
        peak = config.initial_capital
        prev_value = config.initial_capital

        # 일별 시뮬레이션 (순차)
        for current_date in trading_dates:
            if cancel_event is not None and cancel_event.is_set():
                raise BacktestCancelled(f"{current_date} 시작 전 취소됨")

            self._simulate_day(strategy, portfolio, tickers, current_date, window, config, last_close)

            value = portfolio.total_value(last_close)
            peak = max(peak, value)
            equity_curve.append(EquityPoint(
                date=current_date,
                portfolio_value=value,
                cash=portfolio.cash,
                open_quantities=portfolio.open_quantities(),
                daily_return=(value - prev_value) / prev_value if prev_value > 0 else 0.0,
                cumulative_return=(value - config.initial_capital) / config.initial_capital,
                drawdown=(peak - value) / peak if peak > 0 else 0.0,
            ))
            prev_value = value

        # 성과 지표 계산 (첫 시점의 수익률은 초기 자본 대비)
        daily_returns = [p.daily_return for p in equity_curve]
        risk_free_rate = self.risk_limits.risk_free_rate

        performance = calculate_performance(
            trades=portfolio.trade_history,
            values=[p.portfolio_value for p in equity_curve],
            daily_returns=daily_returns,
            drawdowns=[p.drawdown for p in equity_curve],
            initial_capital=config.initial_capital,
            start=equity_curve[0].date,
            end=equity_curve[-1].date,
            risk_free_rate=risk_free_rate,
        )
        risk = calculate_risk_metrics(daily_returns)

        benchmark = None
        if benchmark_data is not None:
            benchmark = calculate_benchmark(
                ticker=config.benchmark_ticker,
                benchmark=benchmark_data,
                portfolio_returns={p.date: p.daily_return for p in equity_curve},
                portfolio_annualized_return=performance.annualized_return,
                risk_free_rate=risk_free_rate,
            )

        logger.info(
            f"백테스트 완료. 총 수익률: {performance.total_return * 100:.2f}%, "
            f"거래 {len(portfolio.trade_history)}건"
        )
        return BacktestResult(
            config=config,
            strategy_name=config.strategy_name or strategy.name,
            tickers=list(tickers),
            equity_curve=equity_curve,
            trades=list(portfolio.trade_history),
            performance=performance,
            risk_metrics=risk,
            benchmark=benchmark,
            state=BacktestState.COMPLETE,
        )

    def _load_benchmark(self, ticker: str, start: date, end: date) -> pd.DataFrame:
        if ticker not in self.provider.get_tickers():
            raise BacktestError(f"벤치마크 데이터 없음: {ticker}", "benchmark_ticker")
        df = self.provider.get_ohlcv(ticker, start, end)
        if df.empty:
            raise BacktestError(f"벤치마크 데이터 없음: {ticker} ({start} ~ {end})", "benchmark_ticker")
        return df

    def _simulate_day(
        self,
        strategy: TradingStrategy,
        portfolio: Portfolio,
        tickers: list[str],
        current_date: date,
        window: int,
        config: BacktestConfig,
        last_close: dict[str, float],
    ) -> None:
        """하루 시뮬레이션. 모든 종목에 대해 시그널 생성 → 주문 실행."""
        # 현재일까지의 데이터만 사용 (미래 데이터 누출 방지)
        histories: dict[str, pd.DataFrame] = {}
        for ticker in tickers:
            df = self.provider.get_history(ticker, current_date, window)
            if df.empty or df["date"].iloc[-1] != current_date:
                continue    # 당일 봉이 없는 종목은 거래하지 않음
            histories[ticker] = df
            last_close[ticker] = float(df["close"].iloc[-1])

        # 거래 전 자산 (당일 종가 기준)
        pre_trade_value = portfolio.total_value(last_close)

        for ticker, df in histories.items():
            if len(df) < strategy.min_history:
                continue

            try:
                signal = strategy.analyze(ticker, df, portfolio.position_quantity(ticker))
            except InsufficientData as e:
                logger.debug(f"[{current_date}] {ticker} 건너뜀: {e}")
                continue

            current_price = last_close[ticker]
            if signal.action == SignalAction.BUY:
                self._execute_buy(portfolio, ticker, signal, current_price, current_date, config, pre_trade_value)
            elif signal.action == SignalAction.SELL:
                self._execute_sell(portfolio, ticker, signal, current_price, current_date, config, pre_trade_value)

    def _execute_buy(
        self,
        portfolio: Portfolio,
        ticker: str,
        signal: TradeSignal,
        price: float,
        current_date: date,
        config: BacktestConfig,
        portfolio_value: float,
    ) -> None:
        """매수 실행. 슬리피지(가격↑) + 고정 수수료 적용 후 portfolio에 반영."""
        exec_price = price * (1 + config.slippage)  # 매수 시 불리하게
        budget = min(
            portfolio_value * self.risk_limits.max_position_fraction * signal.confidence,
            portfolio.cash * (1 - self.risk_limits.min_cash_reserve_fraction),
        )
        quantity = int(math.floor(budget / exec_price))
        if quantity <= 0:
            return

        record = portfolio.execute_buy(
            ticker=ticker,
            quantity=quantity,
            price=exec_price,
            commission=config.commission,
            trade_date=current_date,
            reason=signal.rationale,
            portfolio_value=portfolio_value,
            confidence=signal.confidence,
        )
        if record is None:
            logger.debug(f"[{current_date}] 매수 거부 (현금 부족): {ticker} {quantity}주")
        else:
            logger.debug(f"[{current_date}] 매수: {ticker} {quantity}주 @ ${exec_price:,.2f} ({signal.rationale})")

    def _execute_sell(
        self,
        portfolio: Portfolio,
        ticker: str,
        signal: TradeSignal,
        price: float,
        current_date: date,
        config: BacktestConfig,
        portfolio_value: float,
    ) -> None:
        """매도 실행. 보유량 × 제안 비율 (0주로 내림되면 전량)."""
        held = portfolio.position_quantity(ticker)
        if held <= 0:
            return

        fraction = signal.suggested_position_fraction
        quantity = int(held * fraction) if fraction is not None else held
        if quantity <= 0 or quantity > held:
            quantity = held

        exec_price = price * (1 - config.slippage)  # 매도 시 불리하게
        record = portfolio.execute_sell(
            ticker=ticker,
            quantity=quantity,
            price=exec_price,
            commission=config.commission,
            trade_date=current_date,
            reason=signal.rationale,
            portfolio_value=portfolio_value,
            confidence=signal.confidence,
        )
        logger.debug(
            f"[{current_date}] 매도: {ticker} {quantity}주 @ ${exec_price:,.2f} "
            f"실현손익 ${record.realized_pnl:,.2f} ({signal.rationale})"
        )


def generate_summary(result: BacktestResult) -> str:
    """백테스트 리포트 문자열 (수익률, 리스크 지표, 거래 통계, 벤치마크)."""
    start = result.equity_curve[0].date if result.equity_curve else result.config.start_date
    end = result.equity_curve[-1].date if result.equity_curve else result.config.end_date
    return render_summary(
        strategy_name=result.strategy_name,
        start=start,
        end=end,
        initial_capital=result.config.initial_capital,
        final_value=result.final_value,
        performance=result.performance,
        risk=result.risk_metrics,
        benchmark=result.benchmark,
    )
