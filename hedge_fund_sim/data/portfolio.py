"""
포트폴리오 관리 모듈.

[ 역할 ]
    단일 펀드의 현금, lot 원장(LotLedger), 거래 기록(TradeRecord)을 통합 관리.
    백테스트 엔진이 매수/매도 실행 시 이 클래스를 통해 상태를 갱신.

[ 주요 클래스 ]
    TradeRecord - 개별 거래 내역 (매수/매도, FIFO 실현 손익 포함)
    Portfolio   - 전체 포트폴리오 (현금 + 원장 + 거래내역)

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine._execute_buy/sell()에서
      portfolio.execute_buy/sell() 호출하여 상태 갱신
    - backtest/metrics.py에서 portfolio.trade_history로 성과 계산
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from hedge_fund_sim.data.ledger import LotLedger, realized_pnl


@dataclass(frozen=True)
class TradeRecord:
    """개별 거래 기록. metrics.py에서 승률/수익 계산에 사용됨."""
    date: date
    ticker: str
    side: str               # "BUY" or "SELL"
    quantity: int
    price: float            # 체결 가격 (슬리피지 적용 후)
    commission: float = 0.0
    total_value: float = 0.0       # 매수: 총비용(수수료 포함), 매도: 매도금액(수수료 차감 전)
    cash_after: float = 0.0
    portfolio_value: float = 0.0   # 거래 직전 평가 자산
    realized_pnl: float = 0.0      # FIFO 실현 손익 (매도 시에만)
    realized_pnl_pct: float = 0.0  # 실현 수익률 비율 (매도 시에만)
    confidence: float = 0.0
    reason: str = ""               # 시그널 사유 (로깅용)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "ticker": self.ticker,
            "action": self.side,
            "quantity": self.quantity,
            "price": round(self.price, 4),
            "commission": round(self.commission, 2),
            "total_value": round(self.total_value, 2),
            "cash": round(self.cash_after, 2),
            "portfolio_value": round(self.portfolio_value, 2),
            "realized_pnl": round(self.realized_pnl, 2),
            "realized_pnl_pct": round(self.realized_pnl_pct, 6),
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
        }


class Portfolio:
    """포트폴리오 관리 클래스.

    BacktestEngine이 소유하며, 매수/매도 실행 결과를 반영.
    trade_history는 백테스트 종료 후 metrics 계산에 사용됨.
    """

    def __init__(self, initial_cash: float, fund_id: int = 0):
        self.fund_id = fund_id
        self.initial_cash = initial_cash
        self.cash = initial_cash                    # 가용 현금
        self.ledger = LotLedger()                   # 종목별 lot (FIFO)
        self.trade_history: list[TradeRecord] = []  # 전체 거래 내역

    def position_quantity(self, ticker: str) -> int:
        return self.ledger.available_quantity(self.fund_id, ticker)

    def get_holding_tickers(self) -> list[str]:
        """보유 종목 코드 목록."""
        return self.ledger.tickers(self.fund_id)

    def open_quantities(self) -> dict[str, int]:
        return {t: self.position_quantity(t) for t in self.get_holding_tickers()}

    def market_value(self, prices: dict[str, float]) -> float:
        """보유 종목 평가액. 가격이 없는 종목은 평균 진입가로 평가."""
        total = 0.0
        for ticker in self.get_holding_tickers():
            quantity = self.position_quantity(ticker)
            price = prices.get(ticker)
            if price is None:
                price = self.ledger.position_summary(self.fund_id, ticker, 0.0).avg_entry_price
            total += quantity * price
        return total

    def total_value(self, prices: dict[str, float]) -> float:
        """총 자산 (현금 + 보유 종목 평가액)."""
        return self.cash + self.market_value(prices)

    def execute_buy(
        self,
        ticker: str,
        quantity: int,
        price: float,
        commission: float,
        trade_date: date,
        reason: str = "",
        portfolio_value: float = 0.0,
        confidence: float = 0.0,
    ) -> Optional[TradeRecord]:
        """매수 실행. 현금이 부족하면 아무것도 바꾸지 않고 None."""
        total_cost = price * quantity + commission
        if total_cost > self.cash:
            return None

        self.ledger.open_lot(self.fund_id, ticker, quantity, price, trade_date)
        self.cash -= total_cost

        record = TradeRecord(
            date=trade_date,
            ticker=ticker,
            side="BUY",
            quantity=quantity,
            price=price,
            commission=commission,
            total_value=total_cost,
            cash_after=self.cash,
            portfolio_value=portfolio_value,
            confidence=confidence,
            reason=reason,
        )
        self.trade_history.append(record)
        return record

    def execute_sell(
        self,
        ticker: str,
        quantity: int,
        price: float,
        commission: float,
        trade_date: date,
        reason: str = "",
        portfolio_value: float = 0.0,
        confidence: float = 0.0,
    ) -> TradeRecord:
        """매도 실행. 오래된 lot부터 청산하고 실현 손익을 기록.

        Raises:
            InsufficientInventory: 보유 수량 초과 매도
        """
        closed = self.ledger.close_fifo(self.fund_id, ticker, quantity, price, trade_date)
        pnl = realized_pnl(closed, price)

        gross = price * quantity
        self.cash += gross - commission

        record = TradeRecord(
            date=trade_date,
            ticker=ticker,
            side="SELL",
            quantity=quantity,
            price=price,
            commission=commission,
            total_value=gross,
            cash_after=self.cash,
            portfolio_value=portfolio_value,
            realized_pnl=pnl.pnl,
            realized_pnl_pct=pnl.pnl_pct,
            confidence=confidence,
            reason=reason,
        )
        self.trade_history.append(record)
        return record

    def get_summary(self, prices: dict[str, float] | None = None) -> dict[str, Any]:
        """포트폴리오 요약."""
        prices = prices or {}
        total = self.total_value(prices)
        return {
            "initial_cash": round(self.initial_cash, 2),
            "current_cash": round(self.cash, 2),
            "market_value": round(self.market_value(prices), 2),
            "total_assets": round(total, 2),
            "total_profit": round(total - self.initial_cash, 2),
            "num_holdings": len(self.get_holding_tickers()),
            "num_trades": len(self.trade_history),
        }
