import threading
from datetime import date, datetime

import pytest

from hedge_fund_sim.core.exceptions import InsufficientInventory, InvalidPrice, InvalidQuantity
from hedge_fund_sim.data.ledger import LotLedger, LotStatus, realized_pnl

FUND = 1


def test_round_trip_realized_pnl():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 100, 10.0, date(2024, 1, 2))

    closed = ledger.close_fifo(FUND, "AAPL", 100, 12.0, date(2024, 2, 1))
    pnl = realized_pnl(closed, 12.0)

    assert pnl.pnl == pytest.approx(200.0)
    assert pnl.pnl_pct == pytest.approx(0.20)
    assert ledger.open_lots(FUND, "AAPL") == []
    assert ledger.available_quantity(FUND, "AAPL") == 0


def test_partial_fifo_close():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 50, 10.0, date(2024, 1, 2))
    ledger.open_lot(FUND, "AAPL", 50, 12.0, date(2024, 1, 3))

    closed = ledger.close_fifo(FUND, "AAPL", 60, 11.0, date(2024, 1, 4))

    assert [(c.quantity, c.entry_price) for c in closed] == [(50, 10.0), (10, 12.0)]
    remaining = ledger.open_lots(FUND, "AAPL")
    assert len(remaining) == 1
    assert remaining[0].quantity == 40
    assert remaining[0].entry_price == 12.0
    assert realized_pnl(closed, 11.0).pnl == pytest.approx(40.0)


def test_split_keeps_original_open_lot():
    ledger = LotLedger()
    original = ledger.open_lot(FUND, "AAPL", 100, 10.0, date(2024, 1, 2))

    closed = ledger.close_fifo(FUND, "AAPL", 30, 11.0, date(2024, 1, 5))

    assert original.status == LotStatus.OPEN
    assert original.quantity == 70
    split = ledger.closed_lots(FUND, "AAPL")
    assert len(split) == 1
    assert split[0].lot_id == closed[0].lot_id
    assert split[0].quantity == 30
    assert split[0].entry_price == 10.0
    assert split[0].exit_price == 11.0
    assert split[0].close_timestamp == date(2024, 1, 5)


def test_fifo_orders_by_open_timestamp_not_insertion():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 10, 20.0, datetime(2024, 1, 5, 10, 0))
    ledger.open_lot(FUND, "AAPL", 10, 10.0, datetime(2024, 1, 2, 10, 0))

    closed = ledger.close_fifo(FUND, "AAPL", 10, 15.0, datetime(2024, 1, 6))

    assert closed[0].entry_price == 10.0
    assert ledger.open_lots(FUND, "AAPL")[0].entry_price == 20.0


def test_earliest_lot_reduced_before_later_lots():
    ledger = LotLedger()
    for day, price in [(2, 10.0), (3, 11.0), (4, 12.0)]:
        ledger.open_lot(FUND, "AAPL", 10, price, date(2024, 1, day))

    ledger.close_fifo(FUND, "AAPL", 5, 13.0, date(2024, 1, 5))
    ledger.open_lot(FUND, "AAPL", 10, 9.0, date(2024, 1, 6))
    closed = ledger.close_fifo(FUND, "AAPL", 8, 13.0, date(2024, 1, 7))

    assert [(c.quantity, c.entry_price) for c in closed] == [(5, 10.0), (3, 11.0)]
    assert [lot.quantity for lot in ledger.open_lots(FUND, "AAPL")] == [7, 10, 10]


def test_conservation_of_quantity():
    ledger = LotLedger()
    bought = 0
    for day, quantity in [(2, 30), (3, 45), (4, 25)]:
        ledger.open_lot(FUND, "MSFT", quantity, 100.0 + day, date(2024, 1, day))
        bought += quantity

    sold = 0
    for day, quantity in [(5, 20), (8, 35)]:
        before = ledger.available_quantity(FUND, "MSFT")
        closed = ledger.close_fifo(FUND, "MSFT", quantity, 110.0, date(2024, 1, day))
        sold += sum(c.quantity for c in closed)
        assert 0 <= ledger.available_quantity(FUND, "MSFT") <= before

    rest = ledger.available_quantity(FUND, "MSFT")
    closed = ledger.close_fifo(FUND, "MSFT", rest, 110.0, date(2024, 1, 9))
    sold += sum(c.quantity for c in closed)

    assert sold == bought
    assert ledger.available_quantity(FUND, "MSFT") == 0


def test_insufficient_inventory_changes_nothing():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 10, 10.0, date(2024, 1, 2))

    with pytest.raises(InsufficientInventory) as exc_info:
        ledger.close_fifo(FUND, "AAPL", 11, 12.0, date(2024, 1, 3))

    assert exc_info.value.available == 10
    assert ledger.available_quantity(FUND, "AAPL") == 10
    assert ledger.closed_lots(FUND, "AAPL") == []


@pytest.mark.parametrize("quantity", [0, -5, 1.5, True])
def test_open_lot_rejects_bad_quantity(quantity):
    with pytest.raises(InvalidQuantity):
        LotLedger().open_lot(FUND, "AAPL", quantity, 10.0, date(2024, 1, 2))


@pytest.mark.parametrize("price", [0, -1.0])
def test_open_lot_rejects_bad_price(price):
    with pytest.raises(InvalidPrice):
        LotLedger().open_lot(FUND, "AAPL", 10, price, date(2024, 1, 2))


def test_close_rejects_bad_exit_price():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 10, 10.0, date(2024, 1, 2))
    with pytest.raises(InvalidPrice):
        ledger.close_fifo(FUND, "AAPL", 5, 0.0, date(2024, 1, 3))


def test_position_summary():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 50, 10.0, date(2024, 1, 2))
    ledger.open_lot(FUND, "AAPL", 50, 12.0, date(2024, 1, 3))

    summary = ledger.position_summary(FUND, "AAPL", 13.0)

    assert summary.total_quantity == 100
    assert summary.avg_entry_price == pytest.approx(11.0)
    assert summary.current_value == pytest.approx(1300.0)
    assert summary.unrealized_pnl == pytest.approx(200.0)
    assert summary.unrealized_pnl_pct == pytest.approx(200.0 / 1100.0)


def test_position_summary_empty_is_zero():
    summary = LotLedger().position_summary(FUND, "AAPL", 13.0)
    assert summary.total_quantity == 0
    assert summary.current_value == 0.0
    assert summary.unrealized_pnl == 0.0


def test_funds_are_isolated():
    ledger = LotLedger()
    ledger.open_lot(1, "AAPL", 10, 10.0, date(2024, 1, 2))
    ledger.open_lot(2, "AAPL", 20, 10.0, date(2024, 1, 2))

    assert ledger.available_quantity(1, "AAPL") == 10
    assert ledger.available_quantity(2, "AAPL") == 20
    assert ledger.tickers(1) == ["AAPL"]


def test_from_lots_rebuilds_ledger():
    source = LotLedger()
    source.open_lot(FUND, "AAPL", 10, 10.0, date(2024, 1, 2))
    source.open_lot(FUND, "MSFT", 5, 300.0, date(2024, 1, 2))

    rebuilt = LotLedger.from_lots(source.open_lots(FUND))

    assert rebuilt.available_quantity(FUND, "AAPL") == 10
    assert rebuilt.tickers(FUND) == ["AAPL", "MSFT"]


def test_concurrent_closes_never_oversell():
    ledger = LotLedger()
    ledger.open_lot(FUND, "AAPL", 100, 10.0, date(2024, 1, 2))
    results = []
    errors = []

    def sell():
        try:
            results.append(ledger.close_fifo(FUND, "AAPL", 30, 11.0, date(2024, 1, 3)))
        except InsufficientInventory as e:
            errors.append(e)

    threads = [threading.Thread(target=sell) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sold = sum(c.quantity for closed in results for c in closed)
    assert len(results) == 3
    assert len(errors) == 2
    assert sold == 90
    assert ledger.available_quantity(FUND, "AAPL") == 10


def test_reads_during_split_closes_see_whole_sells_only():
    ledger = LotLedger()
    for day in range(1, 21):
        ledger.open_lot(FUND, "AAPL", 5, 10.0, date(2024, 1, day))
    # 3주씩 청산하면 대부분의 매도가 lot 경계를 넘는다
    observed = []
    done = threading.Event()

    def read():
        while not done.is_set():
            observed.append(ledger.available_quantity(FUND, "AAPL"))

    reader = threading.Thread(target=read)
    reader.start()
    try:
        for day in range(33):
            ledger.close_fifo(FUND, "AAPL", 3, 11.0, datetime(2024, 2, 1, 9, day))
    finally:
        done.set()
        reader.join()

    assert ledger.available_quantity(FUND, "AAPL") == 1
    assert all((100 - quantity) % 3 == 0 for quantity in observed)
