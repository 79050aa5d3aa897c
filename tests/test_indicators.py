import math

import pytest

from hedge_fund_sim.core.exceptions import InsufficientData
from hedge_fund_sim.indicators.technical import (
    atr,
    bollinger_bands,
    ema,
    ma_crossover,
    macd,
    rsi,
    sma,
    stochastic,
    support_resistance,
)


def test_sma_trailing_means():
    assert sma([1, 2, 3, 4, 5], 3) == pytest.approx([2, 3, 4])


def test_sma_insufficient_data():
    with pytest.raises(InsufficientData):
        sma([1, 2], 3)


def test_insufficient_data_is_value_error():
    with pytest.raises(ValueError):
        sma([], 1)


def test_ema_seeded_with_sma():
    # alpha = 0.5, 첫 값 = SMA(1,2,3) = 2
    assert ema([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])


def test_rsi_strictly_increasing_is_100():
    values = rsi([float(i) for i in range(1, 31)], 14)
    assert len(values) == 30 - 14
    assert all(v == 100.0 for v in values)
    assert not any(math.isnan(v) for v in values)


def test_rsi_needs_period_plus_one():
    with pytest.raises(InsufficientData):
        rsi([1.0] * 14, 14)


def test_rsi_mixed_series_in_range():
    prices = [10, 11, 10.5, 11.5, 11, 12, 11.2, 12.5, 12, 13, 12.4, 13.2, 12.8, 13.5, 13, 14]
    values = rsi(prices, 14)
    assert all(0 < v < 100 for v in values)


def test_macd_alignment():
    prices = [100 + i * 0.5 for i in range(40)]
    result = macd(prices)
    assert len(result.macd_line) == 40 - 26 + 1
    assert len(result.signal_line) == len(result.macd_line) - 9 + 1
    assert len(result.histogram) == len(result.signal_line)
    assert result.histogram[-1] == pytest.approx(result.macd_line[-1] - result.signal_line[-1])


def test_macd_rejects_fast_not_less_than_slow():
    with pytest.raises(ValueError):
        macd([1.0] * 50, fast=26, slow=12)


def test_bollinger_population_std():
    bands = bollinger_bands([1, 2, 3], period=3, mult=2)
    std = math.sqrt(2 / 3)
    assert bands.middle == pytest.approx([2.0])
    assert bands.upper == pytest.approx([2 + 2 * std])
    assert bands.lower == pytest.approx([2 - 2 * std])


def test_stochastic_flat_window_is_midpoint():
    assert stochastic([10] * 5, [10] * 5, [10] * 5, period=5) == [50.0]


def test_stochastic_close_at_high():
    highs = [10, 11, 12, 13, 14]
    lows = [9, 10, 11, 12, 13]
    closes = [9.5, 10.5, 11.5, 12.5, 14]
    assert stochastic(highs, lows, closes, period=5) == pytest.approx([100.0])


def test_atr_constant_range():
    n = 20
    values = atr([11.0] * n, [9.0] * n, [10.0] * n, period=14)
    assert len(values) == n - 1 - 14 + 1
    assert values == pytest.approx([2.0] * len(values))


def test_atr_needs_period_plus_one():
    with pytest.raises(InsufficientData):
        atr([11.0] * 14, [9.0] * 14, [10.0] * 14, period=14)


def test_mismatched_lengths_rejected():
    with pytest.raises(ValueError):
        stochastic([1, 2, 3], [1, 2], [1, 2, 3], period=2)


def test_bullish_crossover_at_last_point():
    result = ma_crossover([1.0, 2.0, 3.0], [2.0, 2.0, 2.0])
    assert result.bullish is True
    assert result.bearish is False


def test_bearish_crossover_at_last_point():
    result = ma_crossover([3.0, 2.0, 1.0], [2.0, 2.0, 2.0])
    assert result.bullish is False
    assert result.bearish is True


def test_crossover_short_series_is_false():
    result = ma_crossover([1.0], [2.0])
    assert not result.bullish
    assert not result.bearish


def test_crossover_compares_right_aligned_tails():
    fast = [5.0, 5.0, 5.0, 1.0, 3.0]
    slow = [2.0, 2.0]
    assert ma_crossover(fast, slow).bullish is True


def test_support_resistance_finds_local_extremes():
    lows = [5, 4, 3, 4, 5, 4, 5]
    highs = [6, 7, 8, 7, 6, 7, 6]
    levels = support_resistance(highs, lows, period=2)
    assert 3.0 in levels.support
    assert 8.0 in levels.resistance


def test_support_resistance_short_input_is_empty():
    levels = support_resistance([6, 7, 8], [5, 4, 3], period=2)
    assert levels.support == []
    assert levels.resistance == []


def test_support_resistance_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        support_resistance([6, 7, 8, 7, 6], [5, 4, 3, 4], period=2)
