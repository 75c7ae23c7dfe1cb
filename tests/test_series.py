"""
Integration tests for the DataSeriesManager orchestrator.

Tests validate:
- Lifecycle (initialize / cleanup) guards
- ATR, smoothed bias VWAP and trigger VWAP bookkeeping
- Bias VWAP refresh rule on trigger bars
- Delta efficiency weighting and the trigger delta EWM
- Snapshot contents handed to downstream consumers
"""

import dataclasses
import math

import pytest

from orderflow_engine.core.config import EngineConfig, SeriesConfig
from orderflow_engine.core.exceptions import SeriesNotInitializedError
from orderflow_engine.features.base import FEATURE_NAMES
from orderflow_engine.features.series import DataSeriesManager, SeriesSnapshot


def expected_efficiency(deltas, oldest_weight=0.05):
    n = len(deltas)
    decay = oldest_weight ** (1.0 / (n - 1)) if n > 1 else 1.0
    weights = [decay ** (n - 1 - i) for i in range(n)]
    net = sum(w * d for w, d in zip(weights, deltas))
    total = sum(w * abs(d) for w, d in zip(weights, deltas))
    return abs(net) / total * 100.0


@pytest.fixture
def manager() -> DataSeriesManager:
    manager = DataSeriesManager(period=3, bias_smoothing=3)
    manager.initialize()
    return manager


def delta_bar(make_bar, delta, index=0):
    buy, sell = (delta, 0) if delta >= 0 else (0, -delta)
    return make_bar(index=index, buy=buy, sell=sell)


class TestLifecycle:

    def test_requires_initialize(self, make_bar):
        manager = DataSeriesManager(period=3, bias_smoothing=3)

        with pytest.raises(SeriesNotInitializedError):
            manager.process_trigger_bar(make_bar())
        with pytest.raises(SeriesNotInitializedError):
            manager.process_base_bar(make_bar())

    def test_cleanup_releases_buffers(self, manager, make_bar):
        manager.process_trigger_bar(make_bar())
        manager.cleanup()

        assert not manager.is_initialized
        assert manager.get_trigger_bars() == []
        with pytest.raises(SeriesNotInitializedError):
            manager.process_bias_bar(make_bar())

    def test_initialize_resets_state(self, manager, make_bar):
        manager.process_bias_bar(make_bar())
        manager.process_trigger_bar(make_bar())
        manager.initialize()

        assert manager.get_trigger_bars() == []
        assert manager.bias_vwap == 0.0
        assert manager.ema_tracker.bar_count == 0
        assert manager.cluster_tracker.zone_count == 0

    @pytest.mark.parametrize("period, smoothing", [(0, 3), (3, 0)])
    def test_invalid_parameters(self, period, smoothing):
        with pytest.raises(ValueError):
            DataSeriesManager(period=period, bias_smoothing=smoothing)

    def test_defaults_from_config(self):
        config = EngineConfig(series=SeriesConfig(period=7, bias_smoothing=2))
        manager = DataSeriesManager(config=config)

        assert manager.period == 7
        assert manager.bias_smoothing == 2


class TestBaseSeries:

    def test_atr_after_period_plus_one_bars(self, manager, make_bar):
        for i in range(3):
            result = manager.process_base_bar(make_bar(close=100.0, high=101.0, low=99.0, index=i))
            assert not result.is_valid
        assert manager.base_atr == 0.0

        result = manager.process_base_bar(make_bar(close=100.0, high=101.0, low=99.0, index=3))
        assert result.is_valid
        assert manager.base_atr == pytest.approx(2.0)


class TestBiasVwap:

    def test_first_value_passes_through_then_smooths(self, manager, make_bar):
        manager.process_bias_bar(make_bar(close=100.0, high=102.0, low=98.0, buy=50, sell=50))
        assert manager.bias_vwap == pytest.approx(100.0)

        manager.process_bias_bar(make_bar(close=104.0, high=106.0, low=102.0, buy=50, sell=50))
        # Raw VWAP 102 blended with multiplier 2 / (3 + 1)
        assert manager.bias_vwap == pytest.approx(101.0)

    def test_trigger_refreshes_after_new_bias_bar(self, manager, make_bar):
        manager.process_bias_bar(make_bar(close=100.0, high=102.0, low=98.0, buy=50, sell=50))
        manager.process_bias_bar(make_bar(close=104.0, high=106.0, low=102.0, buy=50, sell=50))

        manager.process_trigger_bar(make_bar(close=104.0))
        assert manager.bias_vwap == pytest.approx(101.5)

        # Same bias close and no new bias bar: no refresh
        manager.process_trigger_bar(make_bar(close=104.0))
        assert manager.bias_vwap == pytest.approx(101.5)

        # Bias close moved beyond tolerance: refresh
        manager.process_trigger_bar(make_bar(close=104.0), current_bias_close=110.0)
        assert manager.bias_vwap == pytest.approx(101.75)

    def test_no_bias_bars_returns_zero(self, manager):
        assert manager.calculate_smoothed_bias_vwap(100.0) == 0.0

    def test_zero_volume_bias_window_returns_zero(self, manager, make_bar):
        manager.process_bias_bar(make_bar(buy=0, sell=0))
        assert manager.bias_vwap == 0.0

    def test_bias_bar_feeds_trackers(self, manager, make_bar):
        manager.process_bias_bar(make_bar(close=100.0, price_volumes={100.0: 60, 101.0: 40}))
        manager.process_bias_bar(make_bar(close=101.0, price_volumes={101.0: 80}))

        assert manager.ema_tracker.bar_count == 2
        assert manager.secondary_ema.bar_count == 2
        assert manager.cluster_tracker.zone_count == 2
        assert manager.bias_profile.is_valid
        assert manager.bias_profile.poc == 101.0
        assert manager.feature_computer.last_bias_close == 101.0


class TestTriggerSeries:

    def test_delta_efficiency_weighting(self, manager, make_bar):
        deltas = [100, -50, 80, 120]
        for i, delta in enumerate(deltas):
            manager.process_trigger_bar(delta_bar(make_bar, delta, i))

        assert manager.delta_efficiency == pytest.approx(expected_efficiency(deltas))
        assert 91.0 < manager.delta_efficiency < 92.0

    def test_delta_efficiency_window_evicts(self, manager, make_bar):
        deltas = [-500, 100, -50, 80, 120]
        for i, delta in enumerate(deltas):
            manager.process_trigger_bar(delta_bar(make_bar, delta, i))

        assert manager.delta_efficiency == pytest.approx(expected_efficiency(deltas[1:]))

    def test_delta_efficiency_single_direction(self, manager, make_bar):
        for i in range(3):
            manager.process_trigger_bar(delta_bar(make_bar, 50, i))

        assert manager.delta_efficiency == pytest.approx(100.0)

    def test_delta_efficiency_empty(self, manager):
        assert manager.calculate_delta_efficiency() == 0.0

    def test_delta_efficiency_all_zero(self, manager, make_bar):
        manager.process_trigger_bar(delta_bar(make_bar, 0))
        assert manager.delta_efficiency == 0.0

    def test_single_bar_efficiency(self, manager, make_bar):
        manager.process_trigger_bar(delta_bar(make_bar, -30))
        assert manager.delta_efficiency == pytest.approx(100.0)

    def test_trigger_delta_ewm(self, manager, make_bar):
        manager.process_trigger_bar(delta_bar(make_bar, 100))
        assert manager.trigger_delta_ewm == pytest.approx(100.0)

        manager.process_trigger_bar(delta_bar(make_bar, 40))
        # alpha = 2 / (5 + 1)
        assert manager.trigger_delta_ewm == pytest.approx(80.0)

    def test_trigger_vwap(self, manager, make_bar):
        manager.process_trigger_bar(make_bar(close=100.0, high=103.0, low=97.0))
        manager.process_trigger_bar(make_bar(close=110.0, high=113.0, low=107.0))

        assert manager.trigger_vwap == pytest.approx(105.0)

    def test_get_trigger_bars_oldest_first(self, manager, make_bar):
        for i in range(6):
            manager.process_trigger_bar(make_bar(index=i))

        assert [bar.index for bar in manager.get_trigger_bars()] == [2, 3, 4, 5]
        assert manager.current_trigger_bar.index == 5

    def test_malformed_bar_is_still_processed(self, manager, make_bar, caplog):
        manager.process_trigger_bar(make_bar(high=99.0, low=101.0, close=100.0))

        assert len(manager.get_trigger_bars()) == 1
        assert "below low" in caplog.text


class TestSnapshot:

    def test_snapshot_contents(self, manager, make_bar):
        for i in range(4):
            manager.process_base_bar(make_bar(close=100.0, high=101.0, low=99.0, index=i))
        manager.process_bias_bar(make_bar(close=100.0))
        manager.process_trigger_bar(make_bar(close=100.0, index=0))
        snapshot = manager.process_trigger_bar(make_bar(close=101.0, index=1))

        assert isinstance(snapshot, SeriesSnapshot)
        assert len(snapshot.features) == 30
        assert snapshot.feature_array.shape == (30,)
        assert snapshot.base_atr == pytest.approx(2.0)
        assert snapshot.bar_index == 1
        assert snapshot.trigger_metrics.is_valid
        assert list(snapshot.feature_series().index) == list(FEATURE_NAMES)

    def test_snapshot_is_immutable(self, manager, make_bar):
        snapshot = manager.process_trigger_bar(make_bar())

        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.delta_efficiency = 0.0

    def test_snapshot_is_hashable(self, manager, make_bar):
        manager.process_bias_bar(make_bar(close=100.0, price_volumes={100.0: 50, 100.25: 30}))
        snapshot = manager.process_trigger_bar(make_bar(close=100.0))

        assert snapshot.bias_profile.is_valid
        assert hash(snapshot) == hash(snapshot)
        assert snapshot in {snapshot}

    def test_snapshot_without_atr(self, manager, make_bar):
        manager.process_trigger_bar(make_bar())
        snapshot = manager.process_trigger_bar(make_bar())

        # No base ATR yet: metrics invalid, features still complete
        assert not snapshot.trigger_metrics.is_valid
        assert len(snapshot.features) == 30
        assert all(math.isfinite(v) for v in snapshot.features)


class TestTelemetry:

    def test_latency_recorded_per_operation(self, manager, make_bar):
        manager.perf_logger.reset_latency()
        manager.process_bias_bar(make_bar(close=100.0))
        manager.process_trigger_bar(make_bar(close=100.0))

        summary = manager.latency_summary()
        assert summary["process_bias_bar"]["count"] == 1
        assert summary["process_trigger_bar"]["count"] == 1

    def test_processing_error_is_logged_and_raised(self, manager, make_bar, monkeypatch):
        errors = []
        monkeypatch.setattr(manager.perf_logger, "log_error",
                            lambda error, context=None: errors.append((error, context)))

        def broken(*args, **kwargs):
            raise RuntimeError("feature assembly failed")

        monkeypatch.setattr(manager.feature_computer, "compute", broken)

        with pytest.raises(RuntimeError):
            manager.process_trigger_bar(make_bar(close=100.0, index=4))

        assert errors[0][1] == {"operation": "process_trigger_bar", "bar_index": 4}

    def test_bars_print_nothing_without_logging_setup(self, manager, make_bar, capsys):
        manager.process_bias_bar(make_bar(close=100.0))
        for i in range(3):
            manager.process_trigger_bar(make_bar(close=100.0 + i, index=i))

        assert capsys.readouterr().out == ""
