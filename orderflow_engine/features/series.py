"""
Data Series Manager

Orchestrates the three bar series the engine consumes:

- base: drives the ATR used to normalize every price distance
- bias: smoothed VWAP, primary and secondary EMA pairs, imbalance
  clusters, the rolling volume profile, bias order-flow metrics and the
  cached bias-bar features
- trigger: fast VWAP, delta efficiency, the trigger delta EWM, trigger
  order-flow metrics and the enriched feature vector

Bars must arrive in chronological order per series from a single thread.
Each trigger bar yields an immutable SeriesSnapshot that can be handed to
other threads without copying tracker internals.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from .base import FEATURE_NAMES, feature_series
from .clusters import ImbalanceClusterTracker
from .enriched import EnrichedFeatureComputer
from .microstructure import aggregate_price_volumes, calculate_volume_profile
from .orderflow import OrderFlowMetricsTracker, is_divergence_confirmed, is_volume_skew
from .results import AtrResult, OrderFlowMetricsResult, VolumeProfileResult
from .technical import EmaTracker, calculate_atr, calculate_vwap
from orderflow_engine.core.config import EngineConfig
from orderflow_engine.core.exceptions import SeriesNotInitializedError
from orderflow_engine.core.logging import get_perf_logger
from orderflow_engine.core.utils import Timer, fast_decay_weighted_efficiency
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.data.buffer import RingBuffer
from orderflow_engine.data.validation import log_bar_issues

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesSnapshot:
    """Engine state after one trigger bar"""
    bar_index: int
    timestamp: datetime
    features: Tuple[float, ...]
    delta_efficiency: float
    base_atr: float
    bias_vwap: float
    trigger_vwap: float
    trigger_delta_ewm: float
    bias_profile: VolumeProfileResult
    trigger_metrics: OrderFlowMetricsResult
    bias_metrics: OrderFlowMetricsResult
    volume_skew: bool = False
    divergence_confirmed: bool = False

    @property
    def feature_array(self) -> np.ndarray:
        return np.asarray(self.features, dtype=np.float64)

    def feature_series(self) -> pd.Series:
        """Features labelled with their wire names"""
        return feature_series(self.features)


class DataSeriesManager:
    """
    Bar collection and analysis across the base, bias and trigger series

    ``initialize`` must be called before any bar is processed; ``cleanup``
    releases the buffers and requires a new ``initialize``.
    """

    def __init__(self, period: Optional[int] = None, bias_smoothing: Optional[int] = None,
                 config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        series_cfg = self.config.series
        self.period = period if period is not None else series_cfg.period
        self.bias_smoothing = bias_smoothing if bias_smoothing is not None else series_cfg.bias_smoothing
        if self.period < 1:
            raise ValueError(f"period must be >= 1, got {self.period}")
        if self.bias_smoothing < 1:
            raise ValueError(f"bias_smoothing must be >= 1, got {self.bias_smoothing}")

        self.perf_logger = get_perf_logger().bind(component="series_manager")

        self._base_bars: Optional[RingBuffer[BarRecord]] = None
        self._bias_bars: Optional[RingBuffer[BarRecord]] = None
        self._trigger_bars: Optional[RingBuffer[BarRecord]] = None

        self.ema_tracker = EmaTracker(self.config.ema)
        self.secondary_ema = EmaTracker(
            self.config.ema,
            fast_period=series_cfg.secondary_fast_period,
            slow_period=series_cfg.secondary_slow_period,
        )
        self.cluster_tracker = ImbalanceClusterTracker(config=self.config.clusters)
        self.bias_metrics_tracker = OrderFlowMetricsTracker(config=self.config.metrics)
        self.trigger_metrics_tracker = OrderFlowMetricsTracker(config=self.config.metrics)
        self.feature_computer = EnrichedFeatureComputer(self.config.features, self.config.clusters)

        self._ema_multiplier = 2.0 / (self.bias_smoothing + 1)
        self._ewm_alpha = 2.0 / (series_cfg.trigger_delta_ewm_span + 1)
        self._reset_state()

    def _reset_state(self) -> None:
        self._smoothed_bias_vwap = 0.0
        self._smoothed_bias_vwap_initialized = False
        self._last_bias_close = 0.0
        self._bias_vwap_needs_update = False
        self._trigger_delta_ewm_initialized = False

        self.base_atr = 0.0
        self.bias_vwap = 0.0
        self.trigger_vwap = 0.0
        self.delta_efficiency = 0.0
        self.trigger_delta_ewm = 0.0
        self.bias_profile = VolumeProfileResult.invalid()
        self.current_trigger_bar: Optional[BarRecord] = None

    @property
    def is_initialized(self) -> bool:
        return self._trigger_bars is not None

    def initialize(self) -> None:
        """Allocate the series buffers and reset every tracker"""
        capacity = self.period + 1
        self._base_bars = RingBuffer(capacity)
        self._bias_bars = RingBuffer(capacity)
        self._trigger_bars = RingBuffer(capacity)

        self._reset_state()
        for tracker in (self.ema_tracker, self.secondary_ema, self.cluster_tracker,
                        self.bias_metrics_tracker, self.trigger_metrics_tracker,
                        self.feature_computer):
            tracker.reset()

        logger.info(f"Series manager initialized: period={self.period}, "
                    f"bias_smoothing={self.bias_smoothing}")

    def cleanup(self) -> None:
        """Release the series buffers"""
        self._base_bars = None
        self._bias_bars = None
        self._trigger_bars = None
        self.current_trigger_bar = None
        logger.info("Series manager cleaned up")

    def reset_day(self) -> None:
        """Clear session-scoped feature state at a session boundary"""
        self.feature_computer.reset_day()

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise SeriesNotInitializedError("DataSeriesManager.initialize() must be called first")

    def process_base_bar(self, bar: BarRecord) -> AtrResult:
        """Add a base bar and refresh the ATR when enough bars are held"""
        self._require_initialized()
        log_bar_issues(bar, "base")

        self._base_bars.append(bar)
        result = calculate_atr(self._base_bars, self.period)
        if result.is_valid:
            self.base_atr = result.current_atr
        return result

    def process_bias_bar(self, bar: BarRecord,
                         current_bias_close: Optional[float] = None) -> OrderFlowMetricsResult:
        """
        Add a completed bias bar and update every bias-driven tracker

        Args:
            bar: Completed bias bar
            current_bias_close: Live bias close (defaults to the bar's close)

        Returns:
            Bias-timeframe order-flow metrics
        """
        self._require_initialized()
        log_bar_issues(bar, "bias")
        if current_bias_close is None:
            current_bias_close = bar.close

        with self._timed("process_bias_bar", bar):
            self._bias_bars.append(bar)
            self._bias_vwap_needs_update = True
            self.bias_vwap = self.calculate_smoothed_bias_vwap(current_bias_close)
            self._last_bias_close = current_bias_close

            self.ema_tracker.process_bar(bar, self.base_atr)
            self.secondary_ema.process_bar(bar, self.base_atr)
            self.cluster_tracker.add_bar(bar.high, bar.low,
                                         bar.bullish_imbalance_count, bar.bearish_imbalance_count)

            series_cfg = self.config.series
            profile_volumes = aggregate_price_volumes(self._bias_bars, series_cfg.level_size,
                                                      series_cfg.tick_size)
            self.bias_profile = calculate_volume_profile(profile_volumes, series_cfg.value_area_percent)
            vah, val = self._value_area(self.bias_profile, bar)

            metrics = self.bias_metrics_tracker.process_bar(bar, vah, val, self.bias_vwap, self.base_atr)
            self.feature_computer.process_bias_bar(bar, self.ema_tracker.slow_ema, self.base_atr)

        return metrics

    def process_trigger_bar(self, bar: BarRecord, current_trigger_close: Optional[float] = None,
                            current_bias_close: Optional[float] = None) -> SeriesSnapshot:
        """
        Add a trigger bar and assemble the engine snapshot

        Args:
            bar: Trigger bar
            current_trigger_close: Live trigger close (defaults to the bar's close)
            current_bias_close: Live bias close (defaults to the last bias close)

        Returns:
            SeriesSnapshot with the feature vector and derived values
        """
        self._require_initialized()
        log_bar_issues(bar, "trigger")
        if current_trigger_close is None:
            current_trigger_close = bar.close
        if current_bias_close is None:
            current_bias_close = self._last_bias_close

        with self._timed("process_trigger_bar", bar):
            self._trigger_bars.append(bar)
            self.current_trigger_bar = bar

            vwap_result = calculate_vwap(self._trigger_bars, current_trigger_close)
            if vwap_result.is_valid:
                self.trigger_vwap = vwap_result.vwap

            # Refresh bias VWAP only when a bias bar arrived or the bias close moved
            tolerance = self.config.series.bias_vwap_refresh_tolerance
            if self._bias_vwap_needs_update or abs(current_bias_close - self._last_bias_close) > tolerance:
                self.bias_vwap = self.calculate_smoothed_bias_vwap(current_bias_close)
                self._last_bias_close = current_bias_close
                self._bias_vwap_needs_update = False

            self.delta_efficiency = self.calculate_delta_efficiency()
            self._update_trigger_delta_ewm(bar.delta)

            trigger_profile = calculate_volume_profile(bar.price_volumes or {},
                                                       self.config.series.value_area_percent)
            vah, val = self._value_area(trigger_profile, bar)
            trigger_metrics = self.trigger_metrics_tracker.process_bar(
                bar, vah, val, self.trigger_vwap, self.base_atr
            )

            features = self.feature_computer.compute(
                self._trigger_bars, bar, self.base_atr, self.trigger_delta_ewm,
                self.cluster_tracker, bar.timestamp
            )

        self.perf_logger.log_features(FEATURE_NAMES, features, bar_index=bar.index)

        return SeriesSnapshot(
            bar_index=bar.index,
            timestamp=bar.timestamp,
            features=tuple(float(v) for v in features),
            delta_efficiency=self.delta_efficiency,
            base_atr=self.base_atr,
            bias_vwap=self.bias_vwap,
            trigger_vwap=self.trigger_vwap,
            trigger_delta_ewm=self.trigger_delta_ewm,
            bias_profile=self.bias_profile,
            trigger_metrics=trigger_metrics,
            bias_metrics=self.bias_metrics_tracker.current_metrics,
            volume_skew=is_volume_skew(bar, self.config.metrics),
            divergence_confirmed=is_divergence_confirmed(bar, self.config.metrics),
        )

    def calculate_smoothed_bias_vwap(self, current_bias_close: float) -> float:
        """
        EMA-smoothed VWAP of the bias window

        The first valid VWAP passes through unsmoothed. Returns 0 when the
        window is empty or its VWAP is invalid.
        """
        if self._bias_bars is None or len(self._bias_bars) == 0:
            return 0.0

        result = calculate_vwap(self._bias_bars, current_bias_close)
        if not result.is_valid:
            return 0.0

        if self._smoothed_bias_vwap_initialized:
            m = self._ema_multiplier
            self._smoothed_bias_vwap = result.vwap * m + self._smoothed_bias_vwap * (1 - m)
        else:
            self._smoothed_bias_vwap = result.vwap
            self._smoothed_bias_vwap_initialized = True
        return self._smoothed_bias_vwap

    def calculate_delta_efficiency(self) -> float:
        """Decay-weighted directional efficiency of the trigger deltas, 0-100"""
        if self._trigger_bars is None or len(self._trigger_bars) == 0:
            return 0.0
        deltas = self._trigger_bars.to_array('delta')
        return float(fast_decay_weighted_efficiency(
            deltas, self.config.series.delta_efficiency_oldest_weight
        ))

    def get_trigger_bars(self) -> List[BarRecord]:
        """Trigger bars held, oldest first"""
        if self._trigger_bars is None:
            return []
        return self._trigger_bars.to_list()

    def _update_trigger_delta_ewm(self, delta: int) -> None:
        if not self._trigger_delta_ewm_initialized:
            self.trigger_delta_ewm = float(delta)
            self._trigger_delta_ewm_initialized = True
        else:
            self.trigger_delta_ewm = self._ewm_alpha * delta + (1 - self._ewm_alpha) * self.trigger_delta_ewm

    @contextmanager
    def _timed(self, operation: str, bar: BarRecord):
        timer = Timer(operation, budget_ms=self.perf_logger.budget_ms)
        try:
            with timer:
                yield
        except Exception as e:
            self.perf_logger.log_error(e, {"operation": operation, "bar_index": bar.index})
            raise
        self.perf_logger.log_latency(operation, timer.duration_ms)

    def latency_summary(self):
        """Per-operation latency statistics for this process"""
        return self.perf_logger.latency_summary()

    @staticmethod
    def _value_area(profile: VolumeProfileResult, bar: BarRecord) -> Tuple[float, float]:
        if profile.is_valid:
            return profile.vah, profile.val
        return bar.high, bar.low
