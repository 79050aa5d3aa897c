"""
시장 데이터 관리 모듈.

[ 역할 ]
    PriceHistoryProvider를 감싸서 캐싱 + 편의 메서드 제공.
    동일 데이터 반복 조회 시 캐시에서 즉시 반환.
    여러 전략이 동시에 같은 종목 이력을 요청하므로 캐시 접근은 Lock으로 보호한다.

[ 의존성 ]
    - core/data_provider.py::PriceHistoryProvider (데이터 소스 추상화)

[ 호출하는 곳 ]
    - engine/strategy_engine.py::StrategyEngine.run_all() (전략 분석용 이력, 실행 전 clear_cache)
    - engine/strategy_engine.py::StrategyEngine (포지션 크기용 변동성, 보유 종목 평가용 최근가)
"""

import threading
from datetime import date
from typing import Optional

import pandas as pd

from hedge_fund_sim.core.data_provider import PriceHistoryProvider
from hedge_fund_sim.utils.stats import sample_std, simple_returns


class MarketDataManager:
    """PriceHistoryProvider 위에 캐싱 레이어를 추가한 매니저.

    사용 예:
        provider = InMemoryPriceProvider()
        manager = MarketDataManager(provider)
        df = manager.get_history("AAPL", date(2024, 6, 3), min_count=100)
    """

    def __init__(self, price_provider: PriceHistoryProvider):
        self.provider = price_provider
        self._cache: dict[str, pd.DataFrame] = {}  # "ticker_asof_count" → DataFrame
        self._lock = threading.Lock()

    def get_history(
        self,
        ticker: str,
        as_of: Optional[date] = None,
        min_count: int = 100,
        use_cache: bool = True,
    ) -> pd.DataFrame:
        """as_of까지의 최근 min_count개 봉 (캐싱 지원).

        Returns:
            DataFrame with columns: [date, open, high, low, close, volume]
        """
        cache_key = f"{ticker}_{as_of}_{min_count}"

        if use_cache:
            with self._lock:
                if cache_key in self._cache:
                    return self._cache[cache_key]

        df = self.provider.get_history(ticker, as_of, min_count)
        if use_cache:
            with self._lock:
                self._cache[cache_key] = df
        return df

    def get_latest_price(self, ticker: str, as_of: Optional[date] = None) -> Optional[float]:
        """최근 종가. 데이터가 없으면 None."""
        return self.provider.get_latest_price(ticker, as_of)

    def get_recent_closes(
        self,
        ticker: str,
        as_of: Optional[date] = None,
        lookback_days: int = 30,
    ) -> list[float]:
        """최근 N일 종가 (오래된 순)."""
        df = self.get_history(ticker, as_of, lookback_days)
        return df["close"].astype(float).tolist()

    def get_volatility(
        self,
        ticker: str,
        as_of: Optional[date] = None,
        lookback_days: int = 30,
    ) -> float:
        """최근 N일 일간 수익률의 표본 표준편차 (연환산하지 않음)."""
        return sample_std(simple_returns(self.get_recent_closes(ticker, as_of, lookback_days)))

    def clear_cache(self) -> None:
        """캐시 초기화."""
        with self._lock:
            self._cache.clear()
