from datetime import date

import pandas as pd
import pytest

from hedge_fund_sim.core.data_provider import FundSnapshot, PriceBar
from hedge_fund_sim.core.exceptions import FundNotFound, TickerNotFound
from hedge_fund_sim.data.in_memory import InMemoryFundProvider, InMemoryPriceProvider
from hedge_fund_sim.data.ledger import Lot, LotLedger
from hedge_fund_sim.data.market_data import MarketDataManager


def test_get_history_is_as_of_and_tail(make_frame):
    frame = make_frame([float(i) for i in range(1, 11)])
    provider = InMemoryPriceProvider({"AAPL": frame})
    as_of = frame["date"].iloc[5]

    df = provider.get_history("AAPL", as_of, 3)

    assert df["close"].tolist() == [4.0, 5.0, 6.0]
    assert df["date"].iloc[-1] == as_of
    assert provider.get_latest_price("AAPL") == 10.0
    assert provider.get_latest_price("AAPL", date(2000, 1, 1)) is None
    assert provider.get_latest_price("MSFT") is None


def test_unknown_ticker_raises():
    provider = InMemoryPriceProvider()
    with pytest.raises(TickerNotFound):
        provider.get_history("NOPE", None, 10)
    with pytest.raises(TickerNotFound):
        provider.get_ohlcv("NOPE", date(2024, 1, 1), date(2024, 2, 1))


def test_load_data_sorts_and_dedupes():
    provider = InMemoryPriceProvider()
    provider.load_data("AAPL", pd.DataFrame({
        "date": [date(2024, 1, 3), date(2024, 1, 2), date(2024, 1, 3)],
        "open": [1.0, 1.0, 1.0],
        "high": [1.0, 1.0, 1.0],
        "low": [1.0, 1.0, 1.0],
        "close": [3.0, 2.0, 3.5],
        "volume": [100, 100, 100],
    }))

    df = provider.get_ohlcv("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert df["close"].tolist() == [2.0, 3.5]
    assert provider.get_bar("AAPL", date(2024, 1, 3)).close == 3.5
    assert provider.get_bar("AAPL", date(2024, 1, 4)) is None


def test_load_data_requires_ohlcv_columns():
    with pytest.raises(ValueError):
        InMemoryPriceProvider({"AAPL": pd.DataFrame({"date": [date(2024, 1, 2)], "close": [1.0]})})


def test_load_bars():
    provider = InMemoryPriceProvider()
    provider.load_bars([
        PriceBar("AAPL", date(2024, 1, 2), 10, 11, 9, 10.5, 1_000),
        PriceBar("MSFT", date(2024, 1, 2), 20, 21, 19, 20.5, 2_000),
    ])
    assert sorted(provider.get_tickers()) == ["AAPL", "MSFT"]
    assert provider.get_latest_price("MSFT") == 20.5


def test_fund_provider():
    funds = InMemoryFundProvider()
    snapshot = funds.add_fund(7, cash=500, lots=[
        Lot(fund_id=7, ticker="AAPL", quantity=3, entry_price=10.0, open_timestamp=date(2024, 1, 2)),
        Lot(fund_id=7, ticker="AAPL", quantity=2, entry_price=11.0, open_timestamp=date(2024, 1, 3)),
    ])

    assert funds.get_fund(7) is snapshot
    assert snapshot.initial_capital == 500
    assert snapshot.position_quantity("AAPL") == 5
    assert snapshot.position_quantity("MSFT") == 0
    assert snapshot.tickers() == ["AAPL"]
    with pytest.raises(FundNotFound):
        funds.get_fund(8)


def test_market_data_cache(make_frame):
    provider = InMemoryPriceProvider({"AAPL": make_frame([100.0, 101.0, 99.0, 102.0])})
    manager = MarketDataManager(provider)

    first = manager.get_history("AAPL", None, 4)
    assert manager.get_history("AAPL", None, 4) is first

    manager.clear_cache()
    assert manager.get_history("AAPL", None, 4) is not first
    assert manager.get_recent_closes("AAPL", None, 2) == [99.0, 102.0]
    assert manager.get_volatility("AAPL", None, 4) > 0


def test_save_fund_replaces_snapshot_after_ledger_close():
    funds = InMemoryFundProvider()
    funds.add_fund(7, cash=500, lots=[
        Lot(fund_id=7, ticker="AAPL", quantity=5, entry_price=10.0, open_timestamp=date(2024, 1, 2)),
    ])

    # 원장에서 청산한 결과를 새 스냅샷으로 저장
    ledger = LotLedger.from_lots(funds.get_fund(7).lots)
    ledger.close_fifo(7, "AAPL", 2, 12.0, date(2024, 1, 5))
    before = funds.get_fund(7)
    funds.save_fund(FundSnapshot(
        fund_id=7,
        cash=before.cash + 2 * 12.0,
        initial_capital=before.initial_capital,
        name=before.name,
        lots=ledger.open_lots(7),
    ))

    after = funds.get_fund(7)
    assert after is not before
    assert after.cash == 524.0
    assert after.initial_capital == 500
    assert after.position_quantity("AAPL") == 3
