from __future__ import annotations

import itertools

from marketsim.services.candles import CandleAggregator


def _aggregate(prices, timestamps, duration: float = 2.0) -> CandleAggregator:
    aggregator = CandleAggregator(duration_seconds=duration, max_history=200)
    aggregator.start(prices[0], 0.0)
    for price, now in zip(prices, timestamps):
        aggregator.update(price, 10, now)
    return aggregator


def test_open_candle_tracks_high_low_close_and_volume():
    aggregator = _aggregate([100.0, 105.0, 98.0, 101.0], [0.0, 0.5, 1.0, 1.5])

    candle = aggregator.current
    assert candle is not None
    assert candle.open == 100.0
    assert candle.high == 105.0
    assert candle.low == 98.0
    assert candle.close == 101.0
    assert candle.volume == 40
    assert list(aggregator.history) == []


def test_high_and_low_ignore_arrival_order():
    prices = [100.0, 104.0, 97.0, 102.0]
    for ordering in itertools.permutations(prices):
        aggregator = CandleAggregator(duration_seconds=2.0, max_history=10)
        aggregator.start(100.0, 0.0)
        for price in ordering:
            aggregator.update(price, 1, 1.0)
        assert aggregator.current.high == 104.0
        assert aggregator.current.low == 97.0
        assert aggregator.current.close == ordering[-1]


def test_candle_rolls_over_after_duration():
    aggregator = CandleAggregator(duration_seconds=2.0, max_history=200)
    aggregator.start(100.0, 0.0)
    aggregator.update(103.0, 5, 1.0)

    closed = aggregator.update(99.0, 7, 2.0)

    assert closed is not None
    assert closed.close == 103.0
    assert closed.volume == 5
    assert len(aggregator.history) == 1
    assert aggregator.current.open == 103.0
    assert aggregator.current.low == 99.0
    assert aggregator.current.close == 99.0
    assert aggregator.current.timestamp == 2.0


def test_history_is_capped():
    aggregator = CandleAggregator(duration_seconds=1.0, max_history=3)
    aggregator.start(100.0, 0.0)
    for second in range(1, 10):
        aggregator.update(100.0 + second, 1, float(second))

    assert len(aggregator.history) == 3
    assert [candle["timestamp"] for candle in aggregator.series()] == [6.0, 7.0, 8.0]


def test_reset_clears_history():
    aggregator = CandleAggregator(duration_seconds=1.0, max_history=3)
    aggregator.start(100.0, 0.0)
    aggregator.update(101.0, 1, 1.5)

    aggregator.reset(100.0, 10.0)

    assert aggregator.series() == []
    assert aggregator.current.open == 100.0
    assert aggregator.current.timestamp == 10.0
