"""
Unit tests for the EMA tracker and the ATR/VWAP estimators.
"""

import pytest

from orderflow_engine.core.config import EmaConfig
from orderflow_engine.data.bars import ImbalanceSummary
from orderflow_engine.features.technical import (
    EmaTracker,
    calculate_atr,
    calculate_vwap,
    true_range,
)


class TestEmaTracker:

    def test_first_bar_seeds_both(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar(close=100.0))

        assert tracker.fast_ema == 100.0
        assert tracker.slow_ema == 100.0
        assert tracker.spread_change == 0.0
        assert tracker.cross_direction == 1
        assert tracker.bars_since_cross == 0

    def test_constant_prices_converge(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar(close=90.0))
        for i in range(200):
            tracker.process_bar(make_bar(close=100.0, index=i + 1))

        assert tracker.fast_ema == pytest.approx(100.0)
        assert tracker.slow_ema == pytest.approx(100.0)

    def test_ema_recurrence(self, make_bar):
        tracker = EmaTracker(EmaConfig(fast_period=5, slow_period=9))
        tracker.process_bar(make_bar(close=100.0))
        tracker.process_bar(make_bar(close=101.0))

        assert tracker.fast_ema == pytest.approx(100.0 + 1.0 / 3.0)
        assert tracker.slow_ema == pytest.approx(100.2)
        assert tracker.spread_change == pytest.approx(tracker.spread)

    def test_cross_tracking(self, make_bar):
        tracker = EmaTracker()
        for close in (100.0, 101.0, 102.0):
            tracker.process_bar(make_bar(close=close))

        assert tracker.cross_direction == 1
        assert tracker.bars_since_cross == 2
        assert tracker.slow_ema_slope == 1

        tracker.process_bar(make_bar(close=90.0))

        assert tracker.spread < 0
        assert tracker.cross_direction == -1
        assert tracker.bars_since_cross == 0
        assert tracker.slow_ema_slope == -1

    def test_slow_slope_needs_three_samples(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar(close=100.0))
        tracker.process_bar(make_bar(close=110.0))

        assert tracker.slow_ema_slope == 0

    def test_flat_slow_slope(self, make_bar):
        tracker = EmaTracker()
        for _ in range(5):
            tracker.process_bar(make_bar(close=100.0))

        assert tracker.slow_ema_slope == 0

    def test_fast_slope_percent(self, make_bar):
        tracker = EmaTracker()
        assert tracker.fast_ema_slope == 0.0

        tracker.process_bar(make_bar(close=100.0))
        assert tracker.fast_ema_slope == 0.0

        tracker.process_bar(make_bar(close=101.0))
        assert tracker.fast_ema_slope == pytest.approx(1.0 / 3.0)

    def test_fast_slope_zero_oldest(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar(close=0.0))
        tracker.process_bar(make_bar(close=1.0))

        assert tracker.fast_ema_slope == 0.0

    def test_last_bar_state_and_reset(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar(
            close=100.0, buy=70, sell=30,
            imbalance=ImbalanceSummary(bullish_count=3, bearish_count=1),
        ))

        assert tracker.last_bar_delta == 40
        assert tracker.imbalance_net == 2

        tracker.reset()

        assert tracker.bar_count == 0
        assert tracker.fast_ema == 0.0
        assert tracker.slow_ema == 0.0
        assert tracker.last_bar_delta == 0
        assert tracker.cross_direction == 0
        assert tracker.fast_ema_slope == 0.0

    def test_performance_stats(self, make_bar):
        tracker = EmaTracker()
        tracker.process_bar(make_bar())

        stats = tracker.get_performance_stats()
        assert stats["total_computations"] == 1

        tracker.reset_performance_stats()
        assert tracker.get_performance_stats() == {}


class TestAtr:

    def test_true_range_uses_previous_close(self):
        assert true_range(105.0, 101.0, 100.0) == 5.0
        assert true_range(105.0, 101.0, 108.0) == 7.0
        assert true_range(105.0, 101.0, 103.0) == 4.0

    def test_single_period_equals_true_range(self, make_bar):
        bars = [
            make_bar(close=100.0, high=102.0, low=98.0),
            make_bar(close=104.0, high=105.0, low=101.0),
        ]
        result = calculate_atr(bars, period=1)

        assert result.is_valid
        assert result.current_atr == 5.0

    def test_averages_most_recent_pairs(self, make_bar):
        bars = [
            make_bar(close=50.0, high=60.0, low=40.0),
            make_bar(close=100.0, high=102.0, low=98.0),
            make_bar(close=101.0, high=103.0, low=99.0),
            make_bar(close=102.0, high=103.0, low=101.0),
        ]
        result = calculate_atr(bars, period=2)

        # Pairs (1,2) and (2,3): true ranges 4 and 2
        assert result.current_atr == pytest.approx(3.0)

    def test_insufficient_bars_invalid(self, make_bar):
        assert not calculate_atr([make_bar()], period=1).is_valid
        assert not calculate_atr([], period=1).is_valid

    def test_non_positive_period_invalid(self, make_bar):
        bars = [make_bar(), make_bar()]
        result = calculate_atr(bars, period=0)

        assert not result.is_valid
        assert result.current_atr == 0.0


class TestVwap:

    def test_equal_volumes_is_mean_typical_price(self, make_bar):
        bars = [
            make_bar(close=100.0, high=103.0, low=97.0, buy=50, sell=50),
            make_bar(close=110.0, high=113.0, low=107.0, buy=50, sell=50),
        ]
        result = calculate_vwap(bars, 108.0)

        assert result.is_valid
        assert result.vwap == pytest.approx(105.0)
        assert result.price_distance == pytest.approx(3.0)

    def test_volume_weighting(self, make_bar):
        bars = [
            make_bar(close=100.0, high=100.0, low=100.0, volume=300),
            make_bar(close=104.0, high=104.0, low=104.0, volume=100),
        ]
        assert calculate_vwap(bars, 100.0).vwap == pytest.approx(101.0)

    def test_empty_invalid(self):
        assert not calculate_vwap([], 100.0).is_valid

    def test_zero_volume_invalid(self, make_bar):
        result = calculate_vwap([make_bar(buy=0, sell=0)], 100.0)

        assert not result.is_valid
        assert result.vwap == 0.0
