import json
import threading

import pytest

from hedge_fund_sim.backtest.engine import BacktestEngine, BacktestState, generate_summary
from hedge_fund_sim.core.exceptions import BacktestCancelled, BacktestError
from hedge_fund_sim.data.in_memory import InMemoryPriceProvider
from hedge_fund_sim.strategies.ma_cross_strategy import MACrossStrategy
from hedge_fund_sim.utils.config import BacktestConfig
from hedge_fund_sim.utils.stats import annualize_volatility, sample_std

TICKER = "TEST"


@pytest.fixture
def config(trend_frame):
    return BacktestConfig(
        start_date=str(trend_frame["date"].iloc[0]),
        end_date=str(trend_frame["date"].iloc[-1]),
        initial_capital=100_000,
        commission=5.0,
        slippage=0.001,
    )


def run(provider, config, tickers=(TICKER,), **kwargs):
    engine = BacktestEngine(provider)
    return engine, engine.run_backtest(MACrossStrategy.standard(), config, list(tickers), **kwargs)


def test_round_trip_on_trending_series(price_provider, config, trend_frame):
    engine, result = run(price_provider, config)

    assert engine.state == BacktestState.COMPLETE
    assert result.state == BacktestState.COMPLETE
    sides = [t.side for t in result.trades]
    assert "BUY" in sides
    assert "SELL" in sides
    assert sides.index("BUY") < sides.index("SELL")
    assert len(result.equity_curve) == len(trend_frame)
    assert result.performance.total_trades == sides.count("SELL")


def test_equity_curve_reconciles(price_provider, config):
    _, result = run(price_provider, config)

    last = result.equity_curve[-1]
    last_close = float(price_provider.get_history(TICKER, last.date, 1)["close"].iloc[-1])
    marked = last.cash + sum(q * last_close for q in last.open_quantities.values())
    assert marked == pytest.approx(last.portfolio_value)
    assert result.final_value == last.portfolio_value


def test_buy_sizing_and_costs(price_provider, config):
    _, result = run(price_provider, config)

    buy = next(t for t in result.trades if t.side == "BUY")
    # 거래 전 자산 × 10% × 신뢰도 한도
    assert buy.quantity * buy.price <= buy.portfolio_value * 0.10 * buy.confidence + 1e-6
    assert buy.commission == 5.0
    assert buy.total_value == pytest.approx(buy.quantity * buy.price + 5.0)


def test_drawdown_and_returns_are_consistent(price_provider, config):
    _, result = run(price_provider, config)

    curve = result.equity_curve
    assert all(p.drawdown >= 0 for p in curve)
    assert result.performance.max_drawdown == pytest.approx(max(p.drawdown for p in curve))
    assert result.performance.total_return == pytest.approx(
        (curve[-1].portfolio_value - 100_000) / 100_000
    )
    # 전략이 min_history를 채우기 전에는 거래 없음
    assert curve[0].portfolio_value == pytest.approx(100_000)
    assert curve[0].daily_return == 0.0


def test_first_day_trade_counts_in_returns(price_provider, config, trend_frame):
    # 시작일에 이미 이력이 충분하면 첫날 매수가 체결된다
    config.start_date = str(trend_frame["date"].iloc[60])

    _, result = run(price_provider, config)

    first = result.equity_curve[0]
    assert result.trades[0].side == "BUY"
    assert result.trades[0].date == first.date
    # 수수료와 슬리피지만큼 초기 자본보다 줄어듦
    assert first.daily_return < 0
    assert first.daily_return == pytest.approx((first.portfolio_value - 100_000) / 100_000)
    returns = [p.daily_return for p in result.equity_curve]
    assert result.performance.volatility == pytest.approx(annualize_volatility(sample_std(returns)))


def test_backtest_is_deterministic(price_provider, config):
    _, first = run(price_provider, config)
    _, second = run(price_provider, config)

    assert [t.to_dict() for t in first.trades] == [t.to_dict() for t in second.trades]
    assert [p.to_dict() for p in first.equity_curve] == [p.to_dict() for p in second.equity_curve]


def test_cancel_before_first_day(price_provider, config):
    cancel = threading.Event()
    cancel.set()
    engine = BacktestEngine(price_provider)

    with pytest.raises(BacktestCancelled):
        engine.run_backtest(MACrossStrategy.standard(), config, [TICKER], cancel_event=cancel)

    assert engine.state == BacktestState.CANCELLED


class CancelAfterDays(MACrossStrategy):
    """지정한 일수만큼 분석한 뒤 취소 이벤트를 설정하는 전략."""

    def __init__(self, cancel_event, days):
        super().__init__(MACrossStrategy.PRESETS["standard"])
        self.cancel_event = cancel_event
        self.days = days
        self.calls = 0

    def analyze(self, ticker, price_history, current_position=0):
        self.calls += 1
        if self.calls == self.days:
            self.cancel_event.set()
        return super().analyze(ticker, price_history, current_position)


def test_cancel_mid_run_stops_before_next_day(price_provider, config, trend_frame):
    # 시작일부터 매일 analyze가 호출되도록 충분한 이력 이후에서 시작
    config.start_date = str(trend_frame["date"].iloc[60])
    cancel = threading.Event()
    strategy = CancelAfterDays(cancel, days=3)
    engine = BacktestEngine(price_provider)

    with pytest.raises(BacktestCancelled):
        engine.run_backtest(strategy, config, [TICKER], cancel_event=cancel)

    assert engine.state == BacktestState.CANCELLED
    # 3일째는 끝까지 처리하고 4일째 시작 전에 중단
    assert strategy.calls == 3


def test_unknown_ticker_fails(price_provider, config):
    engine = BacktestEngine(price_provider)

    with pytest.raises(BacktestError) as exc_info:
        engine.run_backtest(MACrossStrategy.standard(), config, ["NOPE"])

    assert exc_info.value.parameter == "tickers"
    assert engine.state == BacktestState.FAILED


def test_missing_benchmark_fails(price_provider, config):
    config.benchmark_ticker = "SPY"
    engine = BacktestEngine(price_provider)

    with pytest.raises(BacktestError) as exc_info:
        engine.run_backtest(MACrossStrategy.standard(), config, [TICKER])

    assert exc_info.value.parameter == "benchmark_ticker"


@pytest.mark.parametrize("start,end", [
    ("2030-01-01", "2030-12-31"),
    ("2023-06-01", "2023-01-01"),
])
def test_bad_date_range_fails(price_provider, start, end):
    engine = BacktestEngine(price_provider)
    config = BacktestConfig(start_date=start, end_date=end)

    with pytest.raises(BacktestError) as exc_info:
        engine.run_backtest(MACrossStrategy.standard(), config, [TICKER])

    assert exc_info.value.parameter == "start_date/end_date"
    assert engine.state == BacktestState.FAILED


def test_benchmark_metrics(trend_frame, make_frame, config):
    flat = make_frame([100.0] * len(trend_frame))
    provider = InMemoryPriceProvider({TICKER: trend_frame, "FLAT": flat})
    config.benchmark_ticker = "FLAT"

    _, result = run(provider, config)

    benchmark = result.benchmark
    assert benchmark is not None
    assert benchmark.ticker == "FLAT"
    assert benchmark.total_return == 0.0
    # 분산이 0이면 베타 1.0
    assert benchmark.beta == 1.0
    assert result.to_dict()["benchmark"]["ticker"] == "FLAT"


def test_benchmark_beta_against_itself(trend_frame, config):
    provider = InMemoryPriceProvider({TICKER: trend_frame, "BENCH": trend_frame.copy()})
    config.benchmark_ticker = "BENCH"

    _, result = run(provider, config)

    assert result.benchmark.total_return == pytest.approx(
        trend_frame["close"].iloc[-1] / trend_frame["close"].iloc[0] - 1
    )
    # 보유 비중만큼만 움직이므로 0 < 베타 < 1
    assert 0 < result.benchmark.beta < 1


def test_summary_sections(price_provider, config):
    _, result = run(price_provider, config)

    summary = generate_summary(result)

    assert "[ 수익률 ]" in summary
    assert "[ 리스크 지표 ]" in summary
    assert "[ 거래 통계 ]" in summary
    assert "벤치마크" not in summary


def test_to_dict_is_plain_data(price_provider, config):
    _, result = run(price_provider, config)

    data = result.to_dict()

    assert data["state"] == "complete"
    assert data["config"]["tickers"] == [TICKER]
    assert data["trades"][0]["action"] == "BUY"
    assert isinstance(data["equity_curve"][0]["date"], str)


def test_to_dict_is_strict_json(price_provider, config):
    _, result = run(price_provider, config)

    data = json.loads(json.dumps(result.to_dict(), allow_nan=False))

    performance = data["performance"]
    if result.performance.losing_trades == 0:
        assert performance["profit_factor"] is None
    else:
        assert performance["profit_factor"] == pytest.approx(result.performance.profit_factor)
