"""
Unit tests for the enriched feature assembler.

Tests validate:
- Fixed vector length and neutral defaults on edge cases
- Trigger rolling, bias bar, cluster and session slot arithmetic
- Session reset behavior
"""

from datetime import time as dt_time

import numpy as np
import pytest

from orderflow_engine.data.bars import ImbalanceSummary
from orderflow_engine.features.base import FEATURE_NAMES, FEATURE_SPECS, NUM_ENRICHED_FEATURES, feature_series
from orderflow_engine.features.clusters import ImbalanceClusterTracker
from orderflow_engine.features.enriched import EnrichedFeatureComputer


@pytest.fixture
def trigger_window(make_bar):
    """Six trigger bars with rising delta, price and cumulative delta."""
    bars = []
    cumulative = 0
    for i in range(6):
        buy, sell = 60 + 10 * i, 40
        cumulative += buy - sell
        bars.append(make_bar(
            index=i,
            open_=101.0 + i,
            close=101.0 + i,
            high=102.0 + i,
            low=100.0 + i,
            buy=buy,
            sell=sell,
            cumulative_delta=cumulative,
            imbalance=ImbalanceSummary(bullish_count=1),
        ))
    return bars


class TestVectorShape:

    def test_names_are_wire_contract(self):
        assert len(FEATURE_NAMES) == NUM_ENRICHED_FEATURES == 30
        assert FEATURE_NAMES[0] == "T_DeltaSum"
        assert FEATURE_NAMES[11] == "T_CumDeltaZScore"
        assert FEATURE_NAMES[12] == "B_Delta"
        assert FEATURE_NAMES[22] == "B_ClusterSupport"
        assert FEATURE_NAMES[27] == "SessionProgress"
        assert FEATURE_NAMES[29] == "MaxBearImbDist"

    def test_slot_table_is_contiguous(self):
        assert [spec.index for spec in FEATURE_SPECS] == list(range(NUM_ENRICHED_FEATURES))
        assert len(set(FEATURE_NAMES)) == NUM_ENRICHED_FEATURES

    def test_empty_inputs_use_neutral_defaults(self):
        computer = EnrichedFeatureComputer()
        f = computer.compute(None, None, 0.0, 0.0, None, 93000)

        assert f.shape == (30,)
        expected = np.zeros(30)
        expected[[3, 6, 9, 10]] = [0.5, 0.5, 0.5, 1.0]
        np.testing.assert_array_equal(f, expected)

    def test_single_bar_window(self, make_bar):
        computer = EnrichedFeatureComputer()
        bar = make_bar()
        f = computer.compute([bar], bar, 1.0, 5.0, None, 93000)

        assert len(f) == 30
        assert f[2] == 0.0
        assert f[10] == 1.0

    def test_feature_series_labels(self):
        series = feature_series(np.arange(30, dtype=float))

        assert list(series.index) == list(FEATURE_NAMES)
        assert series["B_Range"] == 21.0

    def test_feature_series_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            feature_series([0.0] * 29)


class TestTriggerFeatures:

    def test_rolling_values(self, trigger_window):
        computer = EnrichedFeatureComputer()
        current = trigger_window[-1]
        f = computer.compute(trigger_window, current, 10.0, 25.0, None, 93000)

        assert f[0] == pytest.approx(270.0 / 60.0)
        assert f[1] == pytest.approx(3.0)
        assert f[2] == pytest.approx(2.5)
        assert f[3] == pytest.approx(510.0 / 750.0)
        assert f[4] == pytest.approx(1.0)
        assert f[5] == pytest.approx(1.0)
        assert f[6] == pytest.approx(6.0 / 7.0)
        assert f[7] == pytest.approx(-0.1)
        assert f[8] == pytest.approx(0.6)
        assert f[9] == 0.0
        assert f[10] == pytest.approx(1.2)

        cumulative = np.array([b.cumulative_delta for b in trigger_window], dtype=float)
        expected_z = (270.0 - cumulative.mean()) / cumulative.std()
        assert f[11] == pytest.approx(expected_z)

    def test_delta_shift_needs_two_edges(self, trigger_window):
        computer = EnrichedFeatureComputer()
        window = trigger_window[:5]
        f = computer.compute(window, window[-1], 10.0, 0.0, None, 93000)

        assert f[1] == 0.0

    def test_zero_volume_window_defaults(self, make_bar):
        computer = EnrichedFeatureComputer()
        window = [make_bar(index=i, buy=0, sell=0, cumulative_delta=5) for i in range(3)]
        f = computer.compute(window, window[-1], 1.0, 0.0, None, 93000)

        assert f[3] == 0.5
        assert f[10] == 1.0
        assert f[11] == 0.0

    def test_range_percentile(self, make_bar):
        computer = EnrichedFeatureComputer()
        window = [make_bar(high=101.0 + i, low=100.0) for i in range(4)]
        current = make_bar(high=102.5, low=100.0, close=101.0)
        f = computer.compute(window, current, 1.0, 0.0, None, 93000)

        # Window ranges 1, 2, 3, 4 against a current range of 2.5
        assert f[9] == pytest.approx(0.5)

    def test_atr_floor(self, trigger_window):
        computer = EnrichedFeatureComputer()
        f = computer.compute(trigger_window, trigger_window[-1], 0.0, 1.0, None, 93000)

        assert f[2] == pytest.approx(100.0)


class TestBiasFeatures:

    def test_first_bias_bar(self, make_bar):
        computer = EnrichedFeatureComputer()
        bar = make_bar(open_=100.0, high=110.0, low=100.0, close=105.0, buy=60, sell=40,
                       imbalance=ImbalanceSummary(bullish_count=3, bearish_count=1))
        computer.process_bias_bar(bar, bias_slow_ema=100.0, atr=5.0)

        np.testing.assert_allclose(
            computer.bias_features,
            [4.0, 2.0, 0.5, 1.0, 0.0, 0.0, 0.5, 0.0, 0.0, 2.0],
        )
        assert computer.last_bias_close == 105.0
        assert computer.last_bias_high == 110.0

    def test_second_bias_bar_history(self, make_bar):
        computer = EnrichedFeatureComputer()
        computer.process_bias_bar(
            make_bar(open_=100.0, high=110.0, low=100.0, close=105.0), 100.0, 5.0)
        computer.process_bias_bar(
            make_bar(open_=105.0, high=111.0, low=101.0, close=107.0, buy=50, sell=50), 101.0, 5.0)

        np.testing.assert_allclose(
            computer.bias_features,
            [0.0, 0.0, 0.6, 1.2, 6.0, 0.2, 7.0 / 11.0, -0.8, 1.4, 2.0],
        )

    def test_replayed_into_vector(self, make_bar):
        computer = EnrichedFeatureComputer()
        computer.process_bias_bar(
            make_bar(open_=100.0, high=110.0, low=100.0, close=105.0), 100.0, 5.0)
        f = computer.compute([], None, 5.0, 0.0, None, 93000)

        np.testing.assert_allclose(f[12:22], computer.bias_features)

    def test_bias_atr_floor(self, make_bar):
        computer = EnrichedFeatureComputer()
        computer.process_bias_bar(make_bar(buy=60, sell=40), 100.0, 0.0)

        assert computer.bias_features[0] == pytest.approx(2000.0)

    def test_reset_day(self, make_bar):
        computer = EnrichedFeatureComputer()
        computer.process_bias_bar(make_bar(close=105.0), 100.0, 5.0)
        computer.reset_day()

        np.testing.assert_array_equal(computer.bias_features, np.zeros(10))
        assert computer.last_bias_close == 0.0

        # History restarts: a single bar has no z-score
        computer.process_bias_bar(make_bar(close=107.0), 100.0, 5.0)
        assert computer.bias_features[4] == 0.0


class TestClusterAndSessionFeatures:

    def test_cluster_strength_at_close(self, make_bar):
        tracker = ImbalanceClusterTracker(lookback=5, bucket_size=1.0)
        tracker.add_bar(high=110.0, low=100.0, bullish_count=5, bearish_count=0)
        computer = EnrichedFeatureComputer()

        f = computer.compute([], make_bar(close=104.0), 2.0, 0.0, tracker, 93000)
        assert f[22] == pytest.approx(0.75)
        assert f[23] == 0.0
        assert f[24] == pytest.approx(0.75)
        assert f[25] == 0.0
        assert f[26] == 0.0

        f = computer.compute([], make_bar(close=108.0), 2.0, 0.0, tracker, 93000)
        assert f[22] == 0.0
        assert f[25] == pytest.approx(-1.0)

    @pytest.mark.parametrize("session_time, expected", [
        (93000, 0.0),
        (80000, 0.0),
        (dt_time(12, 42, 30), 0.5),
        (155500, 1.0),
        (170000, 1.0),
    ])
    def test_session_progress(self, session_time, expected):
        f = EnrichedFeatureComputer().compute([], None, 1.0, 0.0, None, session_time)
        assert f[27] == pytest.approx(expected)

    def test_session_progress_from_datetime(self, make_bar):
        bar = make_bar(index=0)
        f = EnrichedFeatureComputer().compute([], bar, 1.0, 0.0, None, bar.timestamp)
        assert f[27] == 0.0

    def test_max_imbalance_distances(self, make_bar):
        bar = make_bar(close=105.0, imbalance=ImbalanceSummary(
            bullish_count=1, max_bullish_price=101.0, max_bullish_volume=40))
        f = EnrichedFeatureComputer().compute([], bar, 2.0, 0.0, None, 93000)

        assert f[28] == pytest.approx(2.0)
        assert f[29] == 0.0
