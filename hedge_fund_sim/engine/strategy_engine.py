"""
전략 실행 엔진 (오케스트레이터).

[ 역할 ]
    이름으로 등록된 전략 인스턴스들을 한 종목에 대해 동시에 실행하고,
    각 전략의 시그널을 합의(consensus) 시그널로 집계한다.

[ 실행 흐름 ]
    run_all(fund_id, ticker) 호출 시:
        1. fund_provider.get_fund()로 현금 + OPEN lot 조회
        2. 활성 전략들의 최소 이력 중 최대값만큼 가격 이력 조회 (1회)
        3. ThreadPoolExecutor로 전략별 execute_strategy() 병렬 실행
        4. 모든 결과를 기다린 뒤(join) 합의 시그널/평균 신뢰도/권장 수량 계산

[ 실패 처리 ]
    개별 전략이 예외를 던지면 StrategyEvaluationFailure로 감싸 결과에 기록한다
    (HOLD, 신뢰도 0, error 메시지). 다른 전략과 합의 계산은 계속 진행.
    FundNotFound / TickerNotFound는 호출자에게 그대로 전파.

[ 합의 규칙 ]
    실행 가능한 전략은 자기 action에 신뢰도만큼 투표, 나머지는 HOLD에 1표.
    최다 득표 action 채택, 동점이면 BUY > SELL > HOLD 순.

[ 호출하는 곳 ]
    - 외부 스케줄러/API 계층 (주기적 자동매매는 이 패키지 범위 밖)
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import pandas as pd

from hedge_fund_sim.core.data_provider import FundProvider, FundSnapshot, PriceHistoryProvider
from hedge_fund_sim.core.exceptions import StrategyEvaluationFailure
from hedge_fund_sim.core.trading_strategy import SignalAction, TradeSignal, TradingStrategy
from hedge_fund_sim.data.market_data import MarketDataManager
from hedge_fund_sim.risk.manager import RiskManager, RiskMetrics, StopLossCandidate, TradeValidation

logger = logging.getLogger("hedge_fund_sim.engine")

VOLATILITY_LOOKBACK_DAYS = 30

# 동점 시 우선순위
TIE_BREAK_ORDER = (SignalAction.BUY, SignalAction.SELL, SignalAction.HOLD)


@dataclass
class StrategyExecutionResult:
    """전략 하나의 실행 결과."""
    strategy_name: str
    strategy_type: str
    signal: TradeSignal
    should_execute: bool = False
    position_size: int = 0
    current_price: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy_name": self.strategy_name,
            "strategy_type": self.strategy_type,
            "signal": self.signal.to_dict(),
            "should_execute": self.should_execute,
            "position_size": self.position_size,
            "current_price": round(self.current_price, 4),
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


@dataclass
class StrategyPortfolioResult:
    """run_all()의 반환값. 전략별 결과 + 합의."""
    fund_id: int
    ticker: str
    strategy_results: list[StrategyExecutionResult]
    consensus: SignalAction
    avg_confidence: float
    recommended_size: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fund_id": self.fund_id,
            "ticker": self.ticker,
            "strategy_results": [r.to_dict() for r in self.strategy_results],
            "consensus_signal": self.consensus.value,
            "avg_confidence": round(self.avg_confidence, 4),
            "recommended_size": self.recommended_size,
            "timestamp": self.timestamp.isoformat(),
        }


# ─── 합의 계산 ──────────────────────────────────────────────────────────────

def calculate_consensus(results: list[StrategyExecutionResult]) -> SignalAction:
    """신뢰도 가중 투표. 동점이면 BUY > SELL > HOLD."""
    votes = {action: 0.0 for action in TIE_BREAK_ORDER}
    for result in results:
        if result.should_execute:
            votes[result.signal.action] += result.signal.confidence
        else:
            votes[SignalAction.HOLD] += 1

    best = max(votes.values())
    for action in TIE_BREAK_ORDER:
        if votes[action] == best:
            return action
    return SignalAction.HOLD


def average_confidence(results: list[StrategyExecutionResult]) -> float:
    """전체 전략의 평균 신뢰도 (실행 불가 전략 포함)."""
    if not results:
        return 0.0
    return sum(r.signal.confidence for r in results) / len(results)


def recommended_size(results: list[StrategyExecutionResult]) -> int:
    """실행 가능 전략들의 신뢰도 가중 평균 수량 (내림). 없으면 0."""
    executable = [r for r in results if r.should_execute]
    total_weight = sum(r.signal.confidence for r in executable)
    if total_weight <= 0:
        return 0
    weighted = sum(r.position_size * r.signal.confidence for r in executable)
    return int(math.floor(weighted / total_weight))


# ─── 엔진 ───────────────────────────────────────────────────────────────────

class StrategyEngine:
    """등록된 전략들을 병렬 실행하는 오케스트레이터.

    사용 예:
        engine = StrategyEngine(price_provider, fund_provider, risk_manager)
        engine.register_strategy(MACrossStrategy.standard())
        engine.register_strategy(MACrossStrategy.aggressive())
        result = engine.run_all(fund_id=1, ticker="AAPL")
    """

    def __init__(
        self,
        price_provider: PriceHistoryProvider,
        fund_provider: FundProvider,
        risk_manager: RiskManager | None = None,
        max_workers: int | None = None,
    ):
        self.market_data = MarketDataManager(price_provider)
        self.fund_provider = fund_provider
        self.risk_manager = risk_manager
        self.max_workers = max_workers
        self._strategies: dict[str, TradingStrategy] = {}

    # ─── 등록 ─────────────────────────────────────────────────────────────

    def register_strategy(self, strategy: TradingStrategy, name: str | None = None) -> str:
        """전략 등록. 같은 이름이면 교체한다."""
        key = name or strategy.name
        if key in self._strategies:
            logger.info(f"전략 교체: {key}")
        self._strategies[key] = strategy
        return key

    def unregister_strategy(self, name: str) -> bool:
        """등록 해제. 없는 이름이면 False."""
        return self._strategies.pop(name, None) is not None

    def registered_strategies(self) -> dict[str, TradingStrategy]:
        return dict(self._strategies)

    # ─── 실행 ─────────────────────────────────────────────────────────────

    def execute_strategy(
        self,
        strategy: TradingStrategy,
        fund: FundSnapshot,
        ticker: str,
        price_history: pd.DataFrame | None = None,
    ) -> StrategyExecutionResult:
        """전략 하나 실행. 예외는 호출자에게 전파한다."""
        if price_history is None:
            price_history = self.market_data.get_history(ticker, None, strategy.min_history)

        current_position = fund.position_quantity(ticker)
        signal = strategy.analyze(ticker, price_history, current_position)
        current_price = float(price_history["close"].iloc[-1])

        should_execute = strategy.should_execute(signal)
        position_size = 0
        if should_execute:
            position_size = self._position_size(strategy, signal, fund, ticker, current_price)

        return StrategyExecutionResult(
            strategy_name=strategy.name,
            strategy_type=strategy.strategy_type,
            signal=signal,
            should_execute=should_execute,
            position_size=position_size,
            current_price=current_price,
        )

    def run_all(self, fund_id: int, ticker: str) -> StrategyPortfolioResult:
        """활성 전략 전체를 병렬 실행하고 합의 시그널 계산.

        Raises:
            FundNotFound: 존재하지 않는 펀드
            TickerNotFound: 알 수 없는 종목
        """
        fund = self.fund_provider.get_fund(fund_id)
        active = {name: s for name, s in self._strategies.items() if s.is_active}

        results: list[StrategyExecutionResult] = []
        if active:
            # 실행마다 최신 이력을 쓰도록 캐시 초기화
            self.market_data.clear_cache()
            required = max(s.min_history for s in active.values())
            price_history = self.market_data.get_history(ticker, None, required)

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    name: executor.submit(self.execute_strategy, strategy, fund, ticker, price_history)
                    for name, strategy in active.items()
                }
                for name, future in futures.items():
                    results.append(self._collect(name, active[name], future))

        consensus = calculate_consensus(results)
        result = StrategyPortfolioResult(
            fund_id=fund_id,
            ticker=ticker,
            strategy_results=results,
            consensus=consensus,
            avg_confidence=average_confidence(results),
            recommended_size=recommended_size(results),
        )
        logger.info(
            f"[{ticker}] fund {fund_id}: 합의 {consensus.value} "
            f"(전략 {len(results)}개, 평균 신뢰도 {result.avg_confidence:.2f}, "
            f"권장 수량 {result.recommended_size})"
        )
        return result

    @staticmethod
    def _collect(name: str, strategy: TradingStrategy, future) -> StrategyExecutionResult:
        try:
            return future.result()
        except Exception as e:
            failure = StrategyEvaluationFailure(name, e)
            logger.warning(f"전략 실행 실패: {failure}")
            return StrategyExecutionResult(
                strategy_name=name,
                strategy_type=strategy.strategy_type,
                signal=TradeSignal.hold(rationale="evaluation failed"),
                error=str(failure),
            )

    def _position_size(
        self,
        strategy: TradingStrategy,
        signal: TradeSignal,
        fund: FundSnapshot,
        ticker: str,
        current_price: float,
    ) -> int:
        if self.risk_manager is None:
            if signal.action != SignalAction.BUY:
                return 0
            return strategy.calculate_position_size(signal, fund.cash, current_price)

        volatility = self.market_data.get_volatility(ticker, None, VOLATILITY_LOOKBACK_DAYS)
        return self.risk_manager.position_size(
            confidence=signal.confidence,
            signal=signal.action,
            volatility=volatility,
            fund_value=self._fund_value(fund),
            available_cash=fund.cash,
            current_price=current_price,
        )

    def _fund_value(self, fund: FundSnapshot) -> float:
        """현금 + OPEN lot 평가액. 시세가 없으면 진입가로 평가."""
        total = fund.cash
        for lot in fund.open_lots():
            price = self.market_data.get_latest_price(lot.ticker)
            total += lot.quantity * (price if price is not None else lot.entry_price)
        return total

    # ─── 리스크 매니저 위임 ──────────────────────────────────────────────

    def validate_trade(self, fund_id: int, ticker: str, quantity: int, price: float) -> TradeValidation:
        return self._require_risk_manager().validate_trade(fund_id, ticker, quantity, price)

    def risk_metrics(self, fund_id: int) -> RiskMetrics:
        return self._require_risk_manager().risk_metrics(fund_id)

    def stop_loss_candidates(self, fund_id: int) -> list[StopLossCandidate]:
        return self._require_risk_manager().stop_loss_candidates(fund_id)

    def _require_risk_manager(self) -> RiskManager:
        if self.risk_manager is None:
            raise RuntimeError("RiskManager가 설정되지 않았습니다.")
        return self.risk_manager
