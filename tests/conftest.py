from datetime import date

import pandas as pd
import pytest

from hedge_fund_sim.data.in_memory import InMemoryFundProvider, InMemoryPriceProvider

TICKER = "TEST"
START = date(2023, 1, 2)


def build_frame(closes, start=START, volume=1_000_000) -> pd.DataFrame:
    """종가 목록으로 영업일 OHLCV DataFrame 생성."""
    dates = pd.bdate_range(start=start, periods=len(closes))
    volumes = volume if isinstance(volume, list) else [volume] * len(closes)
    return pd.DataFrame({
        "date": [d.date() for d in dates],
        "open": closes,
        "high": [c * 1.01 for c in closes],
        "low": [c * 0.99 for c in closes],
        "close": closes,
        "volume": volumes,
    })


def up_then_down_closes(days=300, start_price=100.0, step=1.0) -> list[float]:
    """전반부 상승, 후반부 하락하는 결정적 가격 (무작위성 없음)."""
    half = days // 2
    up = [start_price + step * i for i in range(half)]
    peak = up[-1]
    down = [peak - step * (i + 1) for i in range(days - half)]
    return up + down


@pytest.fixture
def make_frame():
    return build_frame


@pytest.fixture
def trend_frame():
    return build_frame(up_then_down_closes())


@pytest.fixture
def price_provider(trend_frame):
    return InMemoryPriceProvider({TICKER: trend_frame})


@pytest.fixture
def fund_provider():
    return InMemoryFundProvider()
