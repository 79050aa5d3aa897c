"""
메모리 기반 데이터 제공자 구현.

[ 역할 ]
    외부 저장소 없이 미리 로드한 데이터로 주가 이력과 펀드 현황을 제공.
    백테스트, CLI 샘플 실행, 단위 테스트에서 사용한다.

[ 포함 클래스 ]
    InMemoryPriceProvider - core/data_provider.py::PriceHistoryProvider 구현체
                            DataFrame에서 OHLCV 데이터 제공
    InMemoryFundProvider  - core/data_provider.py::FundProvider 구현체
                            펀드 스냅샷(현금 + OPEN lot) 보관

[ 실전 교체 ]
    DB/외부 API 연동 시 같은 추상 클래스를 구현한 제공자를 주입하면 된다.
"""

from datetime import date
from typing import Iterable, Optional

import pandas as pd

from hedge_fund_sim.core.data_provider import (
    OHLCV_COLUMNS,
    FundProvider,
    FundSnapshot,
    PriceBar,
    PriceHistoryProvider,
)
from hedge_fund_sim.core.exceptions import FundNotFound, TickerNotFound
from hedge_fund_sim.data.ledger import Lot


# ─── 주가 데이터 제공자 ──────────────────────────────────────────────────────

class InMemoryPriceProvider(PriceHistoryProvider):
    """DataFrame 기반 주가 데이터 제공자.

    사용법:
        provider = InMemoryPriceProvider()
        provider.load_data("AAPL", aapl_df)  # DataFrame 로드
        df = provider.get_history("AAPL", date(2024, 6, 3), 60)
    """

    def __init__(self, data: dict[str, pd.DataFrame] | None = None):
        self._data: dict[str, pd.DataFrame] = {}  # ticker → OHLCV DataFrame
        for ticker, df in (data or {}).items():
            self.load_data(ticker, df)

    def load_data(self, ticker: str, df: pd.DataFrame) -> None:
        """데이터 로드. 날짜 기준 정렬, 같은 날짜는 마지막 행만 유지.

        Args:
            ticker: 종목 코드
            df: OHLCV DataFrame (columns: date, open, high, low, close, volume)
        """
        missing = set(OHLCV_COLUMNS) - set(df.columns)
        if missing:
            raise ValueError(f"{ticker}: missing columns {sorted(missing)}")

        df = df[OHLCV_COLUMNS].copy()
        df["date"] = pd.to_datetime(df["date"]).dt.date
        df = df.drop_duplicates(subset="date", keep="last")
        self._data[ticker] = df.sort_values("date").reset_index(drop=True)

    def load_bars(self, bars: Iterable[PriceBar]) -> None:
        """PriceBar 목록으로 데이터 로드 (종목별로 묶어서 load_data 호출)."""
        rows: dict[str, list[dict]] = {}
        for bar in bars:
            rows.setdefault(bar.ticker, []).append({
                "date": bar.date,
                "open": bar.open,
                "high": bar.high,
                "low": bar.low,
                "close": bar.close,
                "volume": bar.volume,
            })
        for ticker, ticker_rows in rows.items():
            self.load_data(ticker, pd.DataFrame(ticker_rows))

    def _frame(self, ticker: str) -> pd.DataFrame:
        if ticker not in self._data:
            raise TickerNotFound(ticker)
        return self._data[ticker]

    def get_ohlcv(
        self,
        ticker: str,
        start_date: date,
        end_date: date,
    ) -> pd.DataFrame:
        df = self._frame(ticker)
        mask = (df["date"] >= start_date) & (df["date"] <= end_date)
        return df[mask].copy().reset_index(drop=True)

    def get_history(
        self,
        ticker: str,
        as_of: Optional[date],
        min_count: int,
    ) -> pd.DataFrame:
        df = self._frame(ticker)
        if as_of is not None:
            df = df[df["date"] <= as_of]
        return df.tail(min_count).copy().reset_index(drop=True)

    def get_latest_price(self, ticker: str, as_of: Optional[date] = None) -> Optional[float]:
        if ticker not in self._data:
            return None
        df = self._data[ticker]
        if as_of is not None:
            df = df[df["date"] <= as_of]
        if df.empty:
            return None
        return float(df.iloc[-1]["close"])

    def get_bar(self, ticker: str, on: date) -> Optional[PriceBar]:
        """특정 날짜의 봉. 없으면 None."""
        df = self._frame(ticker)
        row = df[df["date"] == on]
        if row.empty:
            return None
        return PriceBar.from_row(ticker, row.iloc[0])

    def get_tickers(self) -> list[str]:
        """로드된 종목 목록."""
        return list(self._data.keys())


# ─── 펀드 현황 제공자 ────────────────────────────────────────────────────────

class InMemoryFundProvider(FundProvider):
    """펀드 스냅샷 보관소.

    core는 lot을 직접 바꾸지 않으므로, 원장 연산 결과를 반영하려면
    호출자가 save_fund()로 새 스냅샷을 저장한다.
    """

    def __init__(self):
        self._funds: dict[int, FundSnapshot] = {}

    def add_fund(
        self,
        fund_id: int,
        cash: float,
        initial_capital: float | None = None,
        lots: Iterable[Lot] = (),
        name: str = "",
        is_live: bool = False,
    ) -> FundSnapshot:
        snapshot = FundSnapshot(
            fund_id=fund_id,
            cash=cash,
            initial_capital=initial_capital if initial_capital is not None else cash,
            name=name or f"Fund {fund_id}",
            lots=list(lots),
            is_live=is_live,
        )
        self._funds[fund_id] = snapshot
        return snapshot

    def save_fund(self, snapshot: FundSnapshot) -> None:
        self._funds[snapshot.fund_id] = snapshot

    def get_fund(self, fund_id: int) -> FundSnapshot:
        if fund_id not in self._funds:
            raise FundNotFound(fund_id)
        return self._funds[fund_id]
