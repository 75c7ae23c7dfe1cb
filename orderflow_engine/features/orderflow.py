"""
Order-Flow Metrics

Rolling-window composite metrics over one timeframe's bars. One tracker
instance is kept per timeframe (trigger and bias). Each processed bar is
reduced to a small snapshot (POC, value area, VWAP, volume, imbalance
counts, delta) and the metrics are recomputed over the whole window:

- POC migration, direction and trend persistence
- value-area overlap, migration, width and compression (regression slope)
- imbalance polarity, polarization and setup density
- VWAP slope and regime
- rolling delta, its direction and momentum
- volume trend (regression slope normalized by mean volume)
- conviction: six independent one-point bullish/bearish checks

Two single-bar predicates live beside the tracker: ``is_volume_skew`` and
``is_divergence_confirmed``.

Time Complexity: O(n) per bar where n is the lookback
Space Complexity: O(n)
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import time
import logging

import numpy as np

from .base import IncrementalTracker
from .results import OrderFlowMetricsResult
from orderflow_engine.core.config import MetricsConfig
from orderflow_engine.core.utils import direction, fast_linear_slope, safe_divide
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.data.buffer import RingBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Per-bar values retained by the metrics window"""
    poc: float
    vah: float
    val: float
    close: float
    vwap: float
    volume: int
    bullish_imbalances: int
    bearish_imbalances: int
    delta: int


class OrderFlowMetricsTracker(IncrementalTracker):
    """
    Rolling order-flow metrics for one timeframe

    Results are invalid until two snapshots are held, and for any bar
    processed with a non-positive ATR. The snapshot is retained either way.
    """

    def __init__(self, lookback: Optional[int] = None, config: Optional[MetricsConfig] = None):
        super().__init__()
        self.config = config or MetricsConfig()
        self.lookback = lookback if lookback is not None else self.config.lookback
        self._snapshots: RingBuffer[MetricsSnapshot] = RingBuffer(self.lookback)
        self._prev_rolling_delta = 0.0
        self.current_metrics = OrderFlowMetricsResult.invalid()

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def process_bar(self, bar: BarRecord, vah: float, val: float,
                    vwap: float, atr: float) -> OrderFlowMetricsResult:
        """
        Add a completed bar and recompute the window metrics

        Args:
            bar: Completed bar
            vah, val: Value area bounds for the bar's timeframe
            vwap: Current VWAP for the bar's timeframe
            atr: Current ATR used to normalize price distances

        Returns:
            OrderFlowMetricsResult (also stored as current_metrics)
        """
        start = time.perf_counter()
        self._snapshots.append(MetricsSnapshot(
            poc=bar.point_of_control,
            vah=vah,
            val=val,
            close=bar.close,
            vwap=vwap,
            volume=bar.volume,
            bullish_imbalances=bar.bullish_imbalance_count,
            bearish_imbalances=bar.bearish_imbalance_count,
            delta=bar.delta,
        ))

        if len(self._snapshots) < 2 or atr <= 0:
            self.current_metrics = OrderFlowMetricsResult.invalid()
            return self.current_metrics

        cfg = self.config
        atr_norm = max(atr, cfg.atr_floor)
        window = self._snapshots.to_list()
        count = len(window)
        last = window[-1]
        prev = window[-2]

        # POC migration
        poc_migration = (last.poc - prev.poc) / atr_norm
        poc_direction = direction(poc_migration, cfg.poc_dead_zone)
        poc_trend_strength = self._poc_trend_strength(window)

        # Value area
        va_overlap = self._va_overlap(last, prev)
        va_migration = direction((last.vah + last.val) / 2.0 - (prev.vah + prev.val) / 2.0,
                                  cfg.va_dead_zone)
        va_width = (last.vah - last.val) / atr_norm
        widths = np.array([(s.vah - s.val) / atr_norm for s in window], dtype=np.float64)
        compression_rate = float(fast_linear_slope(widths)) if count >= 3 else 0.0
        is_compressing = compression_rate < cfg.compression_threshold

        # Imbalances
        bull_total = sum(s.bullish_imbalances for s in window)
        bear_total = sum(s.bearish_imbalances for s in window)
        imbalance_total = bull_total + bear_total
        imbalance_polarity = safe_divide(bull_total - bear_total, imbalance_total)
        is_polarized = abs(imbalance_polarity) >= cfg.polarization_threshold
        setup_density = imbalance_total / count

        # VWAP
        vwap_slope = (last.vwap - window[0].vwap) / atr_norm
        vwap_regime = direction(vwap_slope, cfg.vwap_dead_zone)

        # Delta
        rolling_delta = sum(s.delta for s in window) / atr_norm
        rolling_delta_direction = direction(rolling_delta, cfg.delta_dead_zone)
        rolling_delta_momentum = rolling_delta - self._prev_rolling_delta
        self._prev_rolling_delta = rolling_delta

        # Volume
        volumes = np.array([s.volume for s in window], dtype=np.float64)
        volume_trend = self._volume_trend(volumes)

        poc_vwap_agreement = poc_direction != 0 and poc_direction == vwap_regime

        bull_points, bear_points = self._conviction(
            window, volumes,
            poc_direction,
            direction(imbalance_polarity, cfg.conviction_imbalance_dead_zone),
            va_migration,
            rolling_delta_direction,
        )

        if bull_points > bear_points:
            conviction_direction = 1
        elif bear_points > bull_points:
            conviction_direction = -1
        else:
            conviction_direction = 0

        self.current_metrics = OrderFlowMetricsResult.create(
            poc_migration=poc_migration,
            poc_direction=poc_direction,
            poc_trend_strength=poc_trend_strength,
            va_overlap=va_overlap,
            va_migration=va_migration,
            va_width=va_width,
            is_compressing=is_compressing,
            compression_rate=compression_rate,
            imbalance_polarity=imbalance_polarity,
            is_polarized=is_polarized,
            setup_density=setup_density,
            vwap_slope=vwap_slope,
            vwap_regime=vwap_regime,
            rolling_delta=rolling_delta,
            rolling_delta_direction=rolling_delta_direction,
            rolling_delta_momentum=rolling_delta_momentum,
            volume_trend=volume_trend,
            poc_vwap_agreement=poc_vwap_agreement,
            conviction_score=bull_points + bear_points,
            conviction_direction=conviction_direction,
        )
        self._record_latency(start)
        return self.current_metrics

    def reset(self) -> None:
        self._snapshots.clear()
        self._prev_rolling_delta = 0.0
        self.current_metrics = OrderFlowMetricsResult.invalid()

    @staticmethod
    def _poc_trend_strength(window) -> float:
        """Share of consecutive POC changes that continue in the same direction"""
        if len(window) < 3:
            return 0.0

        same_direction = 0
        transitions = 0
        for i in range(2, len(window)):
            prev_change = window[i - 1].poc - window[i - 2].poc
            curr_change = window[i].poc - window[i - 1].poc
            if (prev_change > 0 and curr_change > 0) or (prev_change < 0 and curr_change < 0):
                same_direction += 1
            transitions += 1

        return safe_divide(same_direction, transitions)

    @staticmethod
    def _va_overlap(current: MetricsSnapshot, prior: MetricsSnapshot) -> float:
        intersection = max(0.0, min(current.vah, prior.vah) - max(current.val, prior.val))
        union = max(current.vah, prior.vah) - min(current.val, prior.val)
        return intersection / union if union > 0 else 0.0

    @staticmethod
    def _volume_trend(volumes: np.ndarray) -> float:
        if len(volumes) < 3:
            return 0.0
        mean = float(volumes.mean())
        if mean <= 0:
            return 0.0
        return float(fast_linear_slope(volumes)) / mean

    @staticmethod
    def _conviction(window, volumes: np.ndarray, poc_direction: int, polarity_direction: int,
                    va_migration: int, delta_direction: int) -> Tuple[int, int]:
        bull_points = 0
        bear_points = 0
        last = window[-1]

        if last.close > last.vwap:
            bull_points += 1
        elif last.close < last.vwap:
            bear_points += 1

        for signal in (poc_direction, polarity_direction, va_migration):
            if signal > 0:
                bull_points += 1
            elif signal < 0:
                bear_points += 1

        # Above-average volume backs the last bar's delta
        if last.volume > volumes.mean():
            if last.delta > 0:
                bull_points += 1
            elif last.delta < 0:
                bear_points += 1

        if delta_direction > 0:
            bull_points += 1
        elif delta_direction < 0:
            bear_points += 1

        return bull_points, bear_points


def is_volume_skew(bar: BarRecord, config: Optional[MetricsConfig] = None) -> bool:
    """
    POC at an extreme of the bar range with imbalance volume on that side

    True when the POC sits in the top (or bottom) extreme fraction of the
    range and the bullish (or bearish) imbalance volume strictly dominates.
    """
    extreme = (config or MetricsConfig()).skew_extreme
    if bar.range <= 0:
        return False

    poc_position = bar.poc_position
    if extreme <= poc_position <= 1.0 - extreme:
        return False

    imbalance = bar.imbalance
    if imbalance.bullish_volume_sum + imbalance.bearish_volume_sum <= 0:
        return False

    if poc_position > 1.0 - extreme:
        return imbalance.bullish_volume_sum > imbalance.bearish_volume_sum
    return imbalance.bearish_volume_sum > imbalance.bullish_volume_sum


def is_divergence_confirmed(bar: BarRecord, config: Optional[MetricsConfig] = None) -> bool:
    """
    Divergent bar with opposing imbalances stacked at the explaining extreme

    A bullish bar with negative delta needs bearish imbalances near the
    high; a bearish bar with positive delta needs bullish imbalances near
    the low.
    """
    threshold = (config or MetricsConfig()).divergence_position_threshold
    if not bar.is_divergent or bar.range <= 0:
        return False

    imbalance = bar.imbalance
    if bar.is_bullish:
        return imbalance.bearish_count > 0 and imbalance.bearish_avg_position > threshold
    if bar.is_bearish:
        return imbalance.bullish_count > 0 and imbalance.bullish_avg_position < -threshold
    return False
