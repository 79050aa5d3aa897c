"""
리스크 관리 모듈.

[ 역할 ]
    - 신뢰도/변동성 기반 포지션 크기 계산 (수정 켈리 방식)
    - 제안된 거래의 포트폴리오 한도 검증 (집중도, 현금 보유, 레버리지)
    - 펀드 리스크 지표 계산 (변동성, 샤프, 낙폭, VaR)
    - 손절 후보 lot 탐지

[ 한도 위반 처리 ]
    validate_trade()는 한도 위반을 예외로 던지지 않는다.
    RiskLimitViolation 목록을 TradeValidation에 담아 반환하고,
    거래 차단 여부는 호출자가 결정한다.

[ 근사치 ]
    - 켈리 계산의 평균 수익률(kelly_average_win=0.10)은 고정 가정값이다.
    - VaR는 정규분포 근사 (포트폴리오 가치 × 일간 변동성 × z-score).
    - Expected Shortfall ≈ VaR × 1.3.
    - 샤프 비율의 수익률은 펀드 설정 이후 총수익률을 그대로 사용한다.

[ 호출하는 곳 ]
    - engine/strategy_engine.py::StrategyEngine (포지션 크기, 거래 검증)
    - backtest/engine.py::BacktestEngine (RiskLimits 공유)
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Union

from hedge_fund_sim.core.data_provider import FundProvider, FundSnapshot, PriceHistoryProvider
from hedge_fund_sim.core.trading_strategy import SignalAction
from hedge_fund_sim.utils.config import RiskLimits
from hedge_fund_sim.utils.stats import (
    annualize_volatility,
    max_drawdown,
    sample_std,
    sharpe_ratio,
    simple_returns,
    z_score,
)

logger = logging.getLogger("hedge_fund_sim.risk")

KELLY_CAP = 0.25
EXPECTED_SHORTFALL_MULTIPLIER = 1.3


@dataclass
class RiskMetrics:
    """펀드 리스크 지표. 금액은 달러, 비율은 소수 (0.1 = 10%)."""
    total_value: float = 0.0
    total_exposure: float = 0.0
    available_cash: float = 0.0
    leverage_ratio: float = 0.0
    position_sizes: dict[str, int] = field(default_factory=dict)
    position_values: dict[str, float] = field(default_factory=dict)
    position_weights: dict[str, float] = field(default_factory=dict)
    portfolio_return: float = 0.0
    volatility: float = 0.0           # 연환산
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    value_at_risk: float = 0.0        # 95%, 1일
    expected_shortfall: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("total_value", "total_exposure", "available_cash", "value_at_risk", "expected_shortfall"):
            data[key] = round(data[key], 2)
        data["position_values"] = {t: round(v, 2) for t, v in self.position_values.items()}
        return data


@dataclass(frozen=True)
class RiskLimitViolation:
    """한도 위반 기록 (예외 아님)."""
    rule: str
    message: str
    value: float
    limit: float


@dataclass
class TradeValidation:
    is_valid: bool
    violations: list[RiskLimitViolation]
    risk_metrics: RiskMetrics

    @property
    def messages(self) -> list[str]:
        return [v.message for v in self.violations]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "violations": self.messages,
            "risk_metrics": self.risk_metrics.to_dict(),
        }


@dataclass(frozen=True)
class StopLossCandidate:
    ticker: str
    lot_id: int
    current_price: float
    entry_price: float
    stop_price: float
    quantity: int
    unrealized_loss: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker,
            "lot_id": self.lot_id,
            "current_price": round(self.current_price, 4),
            "entry_price": round(self.entry_price, 4),
            "stop_price": round(self.stop_price, 4),
            "quantity": self.quantity,
            "unrealized_loss": round(self.unrealized_loss, 2),
        }


class RiskManager:
    """리스크 매니저.

    사용 예:
        risk = RiskManager(price_provider, fund_provider, RiskLimits())
        shares = risk.position_size(0.7, SignalAction.BUY, 0.02, 100_000, 50_000, 25.0)
        check = risk.validate_trade(fund_id=1, ticker="AAPL", quantity=100, price=25.0)
    """

    def __init__(
        self,
        price_provider: PriceHistoryProvider,
        fund_provider: FundProvider,
        limits: RiskLimits | None = None,
    ):
        self.price_provider = price_provider
        self.fund_provider = fund_provider
        self.limits = limits or RiskLimits()

    @staticmethod
    def z_score(confidence: float) -> float:
        """VaR용 z-score. 95% → 1.645, 99% → 2.326, 그 외 1.96."""
        return z_score(confidence)

    # ─── 포지션 크기 ──────────────────────────────────────────────────────

    def kelly_fraction(self, confidence: float, volatility: float) -> float:
        """수정 켈리 비율. f = (p*W - q*L) / W, [0, 0.25]로 제한.

        p = (신뢰도 + 1) / 2, W = 가정 평균 수익률, L = 변동성
        """
        win_probability = (confidence + 1) / 2
        loss_probability = 1 - win_probability
        average_win = self.limits.kelly_average_win
        average_loss = volatility

        kelly = (win_probability * average_win - loss_probability * average_loss) / average_win
        return min(max(kelly, 0.0), KELLY_CAP)

    def position_size(
        self,
        confidence: float,
        signal: Union[SignalAction, str],
        volatility: float,
        fund_value: float,
        available_cash: float,
        current_price: float,
    ) -> int:
        """매수 주식 수. SELL/HOLD는 0.

        min(펀드가치 × 켈리 × 신뢰도, 펀드가치 × 최대 포지션 비율,
            가용 현금 × (1 - 최소 현금 보유 비율)) / 현재가 (내림)
        """
        action = SignalAction(signal) if isinstance(signal, str) else signal
        if action != SignalAction.BUY or current_price <= 0:
            return 0

        kelly = self.kelly_fraction(confidence, volatility)
        base_value = fund_value * kelly * confidence
        constrained_value = min(
            base_value,
            fund_value * self.limits.max_position_fraction,
            available_cash * (1 - self.limits.min_cash_reserve_fraction),
        )
        return max(0, int(constrained_value // current_price))

    # ─── 리스크 지표 ──────────────────────────────────────────────────────

    def risk_metrics(self, fund_id: int) -> RiskMetrics:
        """펀드 리스크 지표 계산.

        Raises:
            FundNotFound: 존재하지 않는 펀드
        """
        fund = self.fund_provider.get_fund(fund_id)
        return self._compute_metrics(fund)

    def _current_price(self, fund: FundSnapshot, ticker: str) -> float:
        price = self.price_provider.get_latest_price(ticker)
        if price is not None:
            return price
        # 시세가 없으면 진입가로 평가
        lots = fund.open_lots(ticker)
        quantity = sum(lot.quantity for lot in lots)
        return sum(lot.cost_basis for lot in lots) / quantity if quantity else 0.0

    def _recent_closes(self, ticker: str) -> list[float]:
        if ticker not in self.price_provider.get_tickers():
            return []
        df = self.price_provider.get_history(ticker, None, self.limits.volatility_window)
        return df["close"].astype(float).tolist()

    def _compute_metrics(self, fund: FundSnapshot) -> RiskMetrics:
        position_sizes: dict[str, int] = {}
        position_values: dict[str, float] = {}
        closes: dict[str, list[float]] = {}
        total_exposure = 0.0

        for ticker in fund.tickers():
            quantity = fund.position_quantity(ticker)
            value = quantity * self._current_price(fund, ticker)
            position_sizes[ticker] = quantity
            position_values[ticker] = value
            closes[ticker] = self._recent_closes(ticker)
            total_exposure += value

        total_value = fund.cash + total_exposure
        position_weights = {
            t: (v / total_value if total_value > 0 else 0.0) for t, v in position_values.items()
        }

        # 종목별 일간 변동성을 비중으로 가중합
        daily_volatility = sum(
            position_weights[t] * sample_std(simple_returns(closes[t])) for t in position_sizes
        )
        volatility = annualize_volatility(daily_volatility)

        portfolio_return = (
            (total_value - fund.initial_capital) / fund.initial_capital
            if fund.initial_capital > 0 else 0.0
        )
        value_at_risk = total_value * daily_volatility * z_score(0.95)

        return RiskMetrics(
            total_value=total_value,
            total_exposure=total_exposure,
            available_cash=fund.cash,
            leverage_ratio=total_exposure / total_value if total_value > 0 else 0.0,
            position_sizes=position_sizes,
            position_values=position_values,
            position_weights=position_weights,
            portfolio_return=portfolio_return,
            volatility=volatility,
            sharpe_ratio=sharpe_ratio(portfolio_return, volatility, self.limits.risk_free_rate),
            max_drawdown=self._holdings_drawdown(fund.cash, position_sizes, closes),
            value_at_risk=value_at_risk,
            expected_shortfall=value_at_risk * EXPECTED_SHORTFALL_MULTIPLIER,
        )

    @staticmethod
    def _holdings_drawdown(
        cash: float,
        position_sizes: dict[str, int],
        closes: dict[str, list[float]],
    ) -> float:
        """현재 보유 수량을 최근 구간 종가로 평가한 가치 곡선의 최대 낙폭.

        백테스트와 같은 고점 대비 낙폭 정의를 쓴다. 종목별 이력 길이가 다르면
        최근 시점 기준으로 가장 짧은 길이에 맞춘다.
        """
        series = [closes[t] for t in position_sizes if closes[t]]
        if not series:
            return 0.0
        length = min(len(s) for s in series)
        values = [cash] * length
        for ticker in position_sizes:
            ticker_closes = closes[ticker][-length:] if closes[ticker] else []
            for i, close in enumerate(ticker_closes):
                values[i] += position_sizes[ticker] * close
        return max_drawdown(values)

    # ─── 거래 검증 ────────────────────────────────────────────────────────

    def validate_trade(
        self,
        fund_id: int,
        ticker: str,
        quantity: int,
        price: float,
    ) -> TradeValidation:
        """거래 한도 검증. quantity > 0 이면 매수, < 0 이면 매도.

        항상 결과를 반환한다. 차단 여부는 호출자가 결정.
        """
        metrics = self.risk_metrics(fund_id)
        violations: list[RiskLimitViolation] = []
        limits = self.limits

        trade_value = abs(quantity * price)
        weight = trade_value / metrics.total_value if metrics.total_value > 0 else float("inf")
        if weight > limits.max_position_fraction:
            violations.append(RiskLimitViolation(
                rule="max_position_fraction",
                message=(
                    f"Position size {weight * 100:.1f}% exceeds maximum "
                    f"{limits.max_position_fraction * 100:.1f}%"
                ),
                value=weight,
                limit=limits.max_position_fraction,
            ))

        cash_limit = metrics.available_cash * (1 - limits.min_cash_reserve_fraction)
        if quantity > 0 and trade_value > cash_limit:
            violations.append(RiskLimitViolation(
                rule="min_cash_reserve_fraction",
                message="Insufficient cash reserves for trade",
                value=trade_value,
                limit=cash_limit,
            ))

        new_leverage = (
            (metrics.total_exposure + trade_value) / metrics.total_value
            if metrics.total_value > 0 else float("inf")
        )
        if new_leverage > limits.max_leverage:
            violations.append(RiskLimitViolation(
                rule="max_leverage",
                message=f"New leverage {new_leverage:.2f}x exceeds maximum {limits.max_leverage}x",
                value=new_leverage,
                limit=limits.max_leverage,
            ))

        for v in violations:
            logger.warning(f"[RISK] fund {fund_id} {ticker}: {v.message}")

        return TradeValidation(
            is_valid=not violations,
            violations=violations,
            risk_metrics=metrics,
        )

    # ─── 손절 ─────────────────────────────────────────────────────────────

    def stop_loss_candidates(self, fund_id: int) -> list[StopLossCandidate]:
        """진입가 대비 stop_loss_fraction 이상 하락한 OPEN lot 목록.

        시세가 없는 종목은 건너뛴다.
        """
        fund = self.fund_provider.get_fund(fund_id)
        threshold = self.limits.stop_loss_fraction
        candidates = []

        for lot in fund.open_lots():
            current_price = self.price_provider.get_latest_price(lot.ticker)
            if current_price is None:
                continue

            change = (current_price - lot.entry_price) / lot.entry_price
            if change < -threshold:
                candidates.append(StopLossCandidate(
                    ticker=lot.ticker,
                    lot_id=lot.lot_id,
                    current_price=current_price,
                    entry_price=lot.entry_price,
                    stop_price=lot.entry_price * (1 - threshold),
                    quantity=lot.quantity,
                    unrealized_loss=(current_price - lot.entry_price) * lot.quantity,
                ))

        if candidates:
            logger.info(f"[RISK] fund {fund_id}: 손절 후보 {len(candidates)}건")
        return candidates
