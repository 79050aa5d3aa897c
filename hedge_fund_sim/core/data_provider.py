"""
주가/펀드 데이터 제공 추상 클래스 정의.

[ 역할 ]
    OHLCV(시가/고가/저가/종가/거래량) 데이터와 펀드 현황(현금 + 보유 lot)을
    제공하는 인터페이스. 데이터 소스(파일, DB, 외부 API)와 무관하게
    전략/리스크/백테스트에 데이터를 공급한다.

[ 구현체 ]
    - data/in_memory.py::InMemoryPriceProvider  (DataFrame 기반)
    - data/in_memory.py::InMemoryFundProvider   (펀드 스냅샷 보관)

[ 호출하는 곳 ]
    - data/market_data.py::MarketDataManager (캐싱 레이어)
    - engine/strategy_engine.py, risk/manager.py, backtest/engine.py
      (모두 생성자에서 주입받음)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import pandas as pd

from hedge_fund_sim.data.ledger import Lot

OHLCV_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class PriceBar:
    """단일 봉(캔들) 데이터. (ticker, date)당 하나."""
    ticker: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int

    @classmethod
    def from_row(cls, ticker: str, row) -> "PriceBar":
        return cls(
            ticker=ticker,
            date=row["date"],
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=int(row["volume"]),
        )


@dataclass
class FundSnapshot:
    """get_fund()의 반환값. 현금 + 보유 중인(OPEN) lot 목록."""
    fund_id: int
    cash: float
    initial_capital: float
    name: str = ""
    lots: list[Lot] = field(default_factory=list)
    is_live: bool = False   # 페이퍼/실전 구분 플래그 (실제 브로커 연동 없음)

    def open_lots(self, ticker: Optional[str] = None) -> list[Lot]:
        return [
            lot for lot in self.lots
            if lot.is_open and (ticker is None or lot.ticker == ticker)
        ]

    def position_quantity(self, ticker: str) -> int:
        """종목별 보유 수량 합계."""
        return sum(lot.quantity for lot in self.open_lots(ticker))

    def tickers(self) -> list[str]:
        return sorted({lot.ticker for lot in self.open_lots()})


class PriceHistoryProvider(ABC):
    """주가 데이터 제공 추상 클래스.

    모든 구현체는 오래된 날짜부터 정렬된 DataFrame을 반환해야 하며,
    데이터가 부족하면 합성 데이터로 채우지 않고 있는 만큼만 반환한다.
    """

    @abstractmethod
    def get_ohlcv(
        self,
        ticker: str,
        start_date: date,
        end_date: date,
    ) -> pd.DataFrame:
        """기간 OHLCV 조회.

        Returns:
            DataFrame with columns: [date, open, high, low, close, volume]

        Raises:
            TickerNotFound: 알 수 없는 종목
        """
        ...

    @abstractmethod
    def get_history(
        self,
        ticker: str,
        as_of: Optional[date],
        min_count: int,
    ) -> pd.DataFrame:
        """as_of(포함)까지의 최근 min_count개 봉 조회.

        as_of가 None이면 가장 최근 데이터 기준. 이력 시작 부근에서는
        min_count보다 적은 행이 반환될 수 있다.
        """
        ...

    @abstractmethod
    def get_latest_price(self, ticker: str, as_of: Optional[date] = None) -> Optional[float]:
        """최근 종가. 데이터가 없으면 None."""
        ...

    @abstractmethod
    def get_tickers(self) -> list[str]:
        """조회 가능한 종목 코드 목록."""
        ...


class FundProvider(ABC):
    """펀드 현황 제공 추상 클래스."""

    @abstractmethod
    def get_fund(self, fund_id: int) -> FundSnapshot:
        """펀드 현금과 OPEN lot 조회.

        Raises:
            FundNotFound: 존재하지 않는 펀드
        """
        ...
