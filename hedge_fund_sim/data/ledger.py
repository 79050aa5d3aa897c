"""
Lot 원장(ledger) 모듈.

[ 역할 ]
    (펀드, 종목)별 매수 lot을 FIFO 순서로 관리한다.
    매수 시 OPEN lot 생성, 매도 시 가장 오래된 lot부터 청산(전부 또는 분할).
    실현 손익은 청산된 하위 lot(수량, 진입가)으로 정확히 계산한다.

[ 분할 청산 규칙 ]
    lot.quantity <= 남은 청산 수량 → lot 전체를 CLOSED로 변경
    lot.quantity >  남은 청산 수량 → 원래 OPEN lot의 수량을 줄이고,
                                     청산분은 새 CLOSED lot으로 기록
    원래 OPEN lot은 수량이 남아 있는 한 삭제하지 않는다.

[ 동시성 ]
    펀드별 Lock으로 모든 쓰기를 직렬화한다. 보유 수량 확인과 lot 변경은
    같은 Lock 안에서 수행된다. 조회도 같은 Lock 안에서 수량을 집계하므로
    분할 청산 도중의 상태가 보이지 않는다. 단, open_lots()가 돌려준 Lot은
    원장 객체 그대로이므로 이후 청산에 따라 값이 바뀔 수 있다.

[ 호출하는 곳 ]
    - data/portfolio.py::Portfolio (백테스트용 단일 펀드 장부)
    - core/data_provider.py::FundSnapshot (OPEN lot 목록)
    - risk/manager.py (포지션 집계)
"""

import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Iterable, Optional, Union

from hedge_fund_sim.core.exceptions import (
    InsufficientInventory,
    InvalidPrice,
    InvalidQuantity,
    LedgerIntegrityError,
)

logger = logging.getLogger("hedge_fund_sim.ledger")

Timestamp = Union[date, datetime]

_lot_ids = itertools.count(1)


class LotStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Lot:
    """매수 1건으로 생긴 주식 묶음. 청산될 때까지 추적된다."""
    fund_id: int
    ticker: str
    quantity: int
    entry_price: float
    open_timestamp: Timestamp
    status: LotStatus = LotStatus.OPEN
    close_timestamp: Optional[Timestamp] = None
    exit_price: Optional[float] = None
    lot_id: int = 0

    def __post_init__(self):
        if not self.lot_id:
            self.lot_id = next(_lot_ids)

    @property
    def is_open(self) -> bool:
        return self.status == LotStatus.OPEN

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.entry_price

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "fund_id": self.fund_id,
            "ticker": self.ticker,
            "quantity": self.quantity,
            "entry_price": round(self.entry_price, 4),
            "exit_price": round(self.exit_price, 4) if self.exit_price is not None else None,
            "open_timestamp": str(self.open_timestamp),
            "close_timestamp": str(self.close_timestamp) if self.close_timestamp is not None else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ClosedLot:
    """close_fifo()가 반환하는 청산분. 실현 손익 계산용."""
    lot_id: int
    quantity: int
    entry_price: float


@dataclass(frozen=True)
class RealizedPnL:
    """매도 1건의 실현 손익."""
    quantity: int
    cost_basis: float
    proceeds: float
    pnl: float
    pnl_pct: float    # 비율 (0.2 = 20%)


@dataclass(frozen=True)
class PositionSummary:
    """OPEN lot 집계. 저장하지 않고 필요할 때마다 계산한다."""
    ticker: str
    total_quantity: int = 0
    avg_entry_price: float = 0.0
    current_value: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "total_quantity": self.total_quantity,
            "avg_entry_price": round(self.avg_entry_price, 4),
            "current_value": round(self.current_value, 2),
            "unrealized_pnl": round(self.unrealized_pnl, 2),
            "unrealized_pnl_pct": round(self.unrealized_pnl_pct, 4),
        }


def realized_pnl(closed: Iterable[ClosedLot], exit_price: float) -> RealizedPnL:
    """청산분 목록과 매도가로 실현 손익 계산.

    pnl = Σ q_i * (exit - entry_i), pnl_pct = pnl / Σ q_i * entry_i
    """
    closed = list(closed)
    quantity = sum(c.quantity for c in closed)
    cost_basis = sum(c.quantity * c.entry_price for c in closed)
    proceeds = quantity * exit_price
    pnl = sum(c.quantity * (exit_price - c.entry_price) for c in closed)
    pnl_pct = pnl / cost_basis if cost_basis > 0 else 0.0
    return RealizedPnL(
        quantity=quantity,
        cost_basis=cost_basis,
        proceeds=proceeds,
        pnl=pnl,
        pnl_pct=pnl_pct,
    )


def _sort_key(lot: Lot) -> tuple[datetime, int]:
    ts = lot.open_timestamp
    if not isinstance(ts, datetime):
        ts = datetime.combine(ts, time.min)
    return ts, lot.lot_id


def _validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(f"Quantity must be a positive integer, got {quantity!r}")


def _validate_price(price) -> None:
    if price is None or not price > 0:
        raise InvalidPrice(f"Price must be positive, got {price!r}")


class LotLedger:
    """(펀드, 종목)별 lot 원장.

    사용 예:
        ledger = LotLedger()
        ledger.open_lot(1, "AAPL", 100, 10.0, date(2024, 1, 2))
        closed = ledger.close_fifo(1, "AAPL", 60, 12.0, date(2024, 2, 1))
        pnl = realized_pnl(closed, 12.0)
    """

    def __init__(self):
        self._lots: dict[tuple[int, str], list[Lot]] = defaultdict(list)
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_lots(cls, lots: Iterable[Lot]) -> "LotLedger":
        """FundSnapshot 등에서 받은 lot으로 원장 재구성."""
        ledger = cls()
        for lot in lots:
            ledger._lots[(lot.fund_id, lot.ticker)].append(lot)
        return ledger

    def _fund_lock(self, fund_id: int) -> threading.Lock:
        with self._locks_guard:
            if fund_id not in self._locks:
                self._locks[fund_id] = threading.Lock()
            return self._locks[fund_id]

    # ─── 쓰기 ─────────────────────────────────────────────────────────────

    def open_lot(
        self,
        fund_id: int,
        ticker: str,
        quantity: int,
        price: float,
        timestamp: Timestamp,
    ) -> Lot:
        """매수 lot 생성."""
        _validate_quantity(quantity)
        _validate_price(price)

        lot = Lot(
            fund_id=fund_id,
            ticker=ticker,
            quantity=quantity,
            entry_price=float(price),
            open_timestamp=timestamp,
        )
        with self._fund_lock(fund_id):
            self._lots[(fund_id, ticker)].append(lot)
        logger.debug(f"lot 개설: fund {fund_id} {ticker} {quantity}주 @ {price:,.4f} (lot {lot.lot_id})")
        return lot

    def close_fifo(
        self,
        fund_id: int,
        ticker: str,
        quantity: int,
        exit_price: float,
        timestamp: Timestamp,
    ) -> list[ClosedLot]:
        """가장 오래된 OPEN lot부터 quantity만큼 청산.

        Raises:
            InsufficientInventory: quantity > 보유 수량 (아무것도 변경하지 않음)
        """
        _validate_quantity(quantity)
        _validate_price(exit_price)

        with self._fund_lock(fund_id):
            open_lots = sorted(
                (lot for lot in self._lots[(fund_id, ticker)] if lot.is_open),
                key=_sort_key,
            )
            available = sum(lot.quantity for lot in open_lots)
            if quantity > available:
                raise InsufficientInventory(fund_id, ticker, quantity, available)

            closed: list[ClosedLot] = []
            remaining = quantity
            for lot in open_lots:
                if remaining == 0:
                    break
                if lot.quantity <= remaining:
                    lot.status = LotStatus.CLOSED
                    lot.exit_price = float(exit_price)
                    lot.close_timestamp = timestamp
                    remaining -= lot.quantity
                    closed.append(ClosedLot(lot.lot_id, lot.quantity, lot.entry_price))
                else:
                    lot.quantity -= remaining
                    split = Lot(
                        fund_id=fund_id,
                        ticker=ticker,
                        quantity=remaining,
                        entry_price=lot.entry_price,
                        open_timestamp=lot.open_timestamp,
                        status=LotStatus.CLOSED,
                        close_timestamp=timestamp,
                        exit_price=float(exit_price),
                    )
                    self._lots[(fund_id, ticker)].append(split)
                    closed.append(ClosedLot(split.lot_id, split.quantity, split.entry_price))
                    remaining = 0

                if lot.quantity < 0:
                    raise LedgerIntegrityError(f"Negative quantity on lot {lot.lot_id}")

            if remaining != 0:
                raise LedgerIntegrityError(
                    f"FIFO close of {ticker} left {remaining} shares unmatched"
                )
        logger.debug(f"FIFO 청산: fund {fund_id} {ticker} {quantity}주 @ {exit_price:,.4f} (lot {len(closed)}개)")
        return closed

    # ─── 조회 ─────────────────────────────────────────────────────────────

    # _fund_lock은 재진입 불가이므로 조회 메서드끼리 서로 호출하지 않는다

    def open_lots(self, fund_id: int, ticker: Optional[str] = None) -> list[Lot]:
        """OPEN lot 목록 (오래된 순)."""
        with self._fund_lock(fund_id):
            return sorted(
                (lot for lot in self._iter_lots(fund_id, ticker) if lot.is_open),
                key=_sort_key,
            )

    def closed_lots(self, fund_id: int, ticker: Optional[str] = None) -> list[Lot]:
        with self._fund_lock(fund_id):
            return [lot for lot in self._iter_lots(fund_id, ticker) if not lot.is_open]

    def available_quantity(self, fund_id: int, ticker: str) -> int:
        with self._fund_lock(fund_id):
            return sum(lot.quantity for lot in self._iter_lots(fund_id, ticker) if lot.is_open)

    def tickers(self, fund_id: int) -> list[str]:
        """OPEN lot이 있는 종목 목록."""
        with self._fund_lock(fund_id):
            return sorted({lot.ticker for lot in self._iter_lots(fund_id, None) if lot.is_open})

    def position_summary(
        self,
        fund_id: int,
        ticker: str,
        current_price: float,
    ) -> PositionSummary:
        with self._fund_lock(fund_id):
            quantities = [
                (lot.quantity, lot.entry_price)
                for lot in self._iter_lots(fund_id, ticker)
                if lot.is_open
            ]
        total_quantity = sum(q for q, _ in quantities)
        if total_quantity == 0:
            return PositionSummary(ticker=ticker)

        cost_basis = sum(q * price for q, price in quantities)
        current_value = total_quantity * current_price
        unrealized = current_value - cost_basis
        return PositionSummary(
            ticker=ticker,
            total_quantity=total_quantity,
            avg_entry_price=cost_basis / total_quantity,
            current_value=current_value,
            unrealized_pnl=unrealized,
            unrealized_pnl_pct=unrealized / cost_basis if cost_basis > 0 else 0.0,
        )

    def _iter_lots(self, fund_id: int, ticker: Optional[str]) -> Iterable[Lot]:
        if ticker is not None:
            return list(self._lots.get((fund_id, ticker), []))
        return [
            lot
            for (fid, _), lots in list(self._lots.items())
            if fid == fund_id
            for lot in lots
        ]
