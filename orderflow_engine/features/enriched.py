"""
Enriched Feature Assembler

Builds the fixed 30-slot feature vector (see ``FEATURE_NAMES``) from four
groups:

- Trigger rolling (slots 0-11): computed on every call over the trigger
  bar window
- Bias bar (slots 12-21): computed once per completed bias bar, cached and
  replayed on every call
- Bias cluster (slots 22-26): cluster strength and nearest zones at the
  current close
- Session context (slots 27-29): session progress and distance to the
  bar's strongest imbalances

All price distances are normalized by ``max(atr, atr_floor)``.

Time Complexity: O(n) per call where n is the trigger window length
Space Complexity: O(1) beyond the short bias history
"""

from datetime import datetime, time as dt_time
from typing import Optional, Sequence, Union
import time
import logging

import numpy as np

from .base import IncrementalTracker, NUM_ENRICHED_FEATURES
from .clusters import ImbalanceClusterTracker
from orderflow_engine.core.config import ClusterConfig, FeatureAssemblerConfig
from orderflow_engine.core.utils import minutes_of_day, safe_divide
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.data.buffer import RingBuffer

logger = logging.getLogger(__name__)

NUM_BIAS_FEATURES = 10


def _population_std(values: np.ndarray) -> float:
    variance = float(np.mean(values * values) - np.mean(values) ** 2)
    return float(np.sqrt(variance)) if variance > 0 else 0.0


class EnrichedFeatureComputer(IncrementalTracker):
    """
    Assembles the 30-slot enriched feature vector

    ``process_bias_bar`` must be called on each completed bias bar;
    ``compute`` is called on each trigger bar and never fails, returning
    neutral defaults where history is insufficient.
    """

    def __init__(self, config: Optional[FeatureAssemblerConfig] = None,
                 cluster_config: Optional[ClusterConfig] = None):
        super().__init__()
        self.config = config or FeatureAssemblerConfig()
        self.cluster_config = cluster_config or ClusterConfig()

        lookback = self.config.zscore_lookback
        self._bias_closes: RingBuffer[float] = RingBuffer(lookback)
        self._bias_highs: RingBuffer[float] = RingBuffer(lookback)
        self._bias_lows: RingBuffer[float] = RingBuffer(lookback)
        self._bias_features = np.zeros(NUM_BIAS_FEATURES, dtype=np.float64)

        self.last_bias_open = 0.0
        self.last_bias_high = 0.0
        self.last_bias_low = 0.0
        self.last_bias_close = 0.0

    @property
    def bias_features(self) -> np.ndarray:
        return self._bias_features.copy()

    def reset(self) -> None:
        self.reset_day()

    def reset_day(self) -> None:
        """Clear the bias history and cached bias features at a session boundary"""
        self._bias_closes.clear()
        self._bias_highs.clear()
        self._bias_lows.clear()
        self._bias_features = np.zeros(NUM_BIAS_FEATURES, dtype=np.float64)
        self.last_bias_open = 0.0
        self.last_bias_high = 0.0
        self.last_bias_low = 0.0
        self.last_bias_close = 0.0

    def process_bias_bar(self, bar: BarRecord, bias_slow_ema: float, atr: float) -> None:
        """
        Recompute the cached bias-bar features

        Args:
            bar: Completed bias bar
            bias_slow_ema: Current slow EMA of the bias series
            atr: Current ATR
        """
        cfg = self.config
        self.last_bias_open = bar.open
        self.last_bias_high = bar.high
        self.last_bias_low = bar.low
        self.last_bias_close = bar.close

        self._bias_closes.append(bar.close)
        self._bias_highs.append(bar.high)
        self._bias_lows.append(bar.low)

        atr_safe = max(atr, cfg.atr_floor)
        bias_range = bar.high - bar.low
        close_pos = (bar.close - bar.low) / bias_range if bias_range > cfg.channel_epsilon else 0.5
        slow_ema_dist = (bar.close - bias_slow_ema) / atr_safe

        z_score = 0.0
        std_dev = 0.0
        if len(self._bias_closes) >= 2:
            std = _population_std(self._bias_closes.to_array())
            std_dev = std / atr_safe
            if std > 0:
                z_score = (bar.close - bias_slow_ema) / std

        channel_pos = 0.5
        channel_high_dist = 0.0
        channel_low_dist = 0.0
        if len(self._bias_highs) >= 2 and len(self._bias_lows) >= 2:
            channel_high = float(self._bias_highs.to_array().max())
            channel_low = float(self._bias_lows.to_array().min())
            span = channel_high - channel_low
            if span > cfg.channel_epsilon:
                channel_pos = (bar.close - channel_low) / span
            channel_high_dist = (bar.close - channel_high) / atr_safe
            channel_low_dist = (bar.close - channel_low) / atr_safe

        self._bias_features = np.array([
            bar.delta / atr_safe,
            bar.imbalance_net,
            close_pos,
            slow_ema_dist,
            z_score,
            std_dev,
            channel_pos,
            channel_high_dist,
            channel_low_dist,
            bias_range / atr_safe,
        ], dtype=np.float64)

    def compute(self, trigger_bars: Optional[Sequence[BarRecord]], current_bar: Optional[BarRecord],
                atr: float, trigger_delta_ewm: float,
                cluster_tracker: Optional[ImbalanceClusterTracker],
                session_time: Union[datetime, dt_time, int]) -> np.ndarray:
        """
        Assemble the feature vector for the current trigger bar

        Args:
            trigger_bars: Trigger bar window, oldest first (may be empty)
            current_bar: Current trigger bar
            atr: Current ATR
            trigger_delta_ewm: Exponentially weighted trigger delta
            cluster_tracker: Bias cluster tracker, or None to leave slots 22-26 at 0
            session_time: Bar time (datetime, time or HHMMSS integer)

        Returns:
            Float array of length 30
        """
        start = time.perf_counter()
        cfg = self.config
        f = np.zeros(NUM_ENRICHED_FEATURES, dtype=np.float64)
        atr_safe = max(atr, cfg.atr_floor)

        n = len(trigger_bars) if trigger_bars is not None else 0
        if n >= 2 and current_bar is not None:
            self._compute_trigger_features(f, list(trigger_bars), current_bar, atr_safe, trigger_delta_ewm)
        else:
            f[3] = 0.5
            f[6] = 0.5
            f[9] = 0.5
            f[10] = 1.0

        f[12:22] = self._bias_features

        close = current_bar.close if current_bar is not None else 0.0
        if cluster_tracker is not None:
            norm = self.cluster_config.strength_norm
            bull_strength = cluster_tracker.get_bull_strength(close)
            bear_strength = cluster_tracker.get_bear_strength(close)
            f[22] = bull_strength / norm
            f[23] = bear_strength / norm
            f[24] = (bull_strength - bear_strength) / norm
            f[25] = cluster_tracker.find_nearest_support_dist(
                close, self.cluster_config.nearest_threshold,
                self.cluster_config.nearest_max_buckets) / atr_safe
            f[26] = cluster_tracker.find_nearest_resistance_dist(
                close, self.cluster_config.nearest_threshold,
                self.cluster_config.nearest_max_buckets) / atr_safe

        progress = (minutes_of_day(session_time) - cfg.session_start_minutes) / cfg.session_span_minutes
        f[27] = min(1.0, max(0.0, progress))

        if current_bar is not None:
            imbalance = current_bar.imbalance
            if imbalance.max_bullish_price > 0:
                f[28] = (current_bar.close - imbalance.max_bullish_price) / atr_safe
            if imbalance.max_bearish_price > 0:
                f[29] = (current_bar.close - imbalance.max_bearish_price) / atr_safe

        self._record_latency(start)
        return f

    def _compute_trigger_features(self, f: np.ndarray, bars: Sequence[BarRecord],
                                  current_bar: BarRecord, atr_safe: float,
                                  trigger_delta_ewm: float) -> None:
        cfg = self.config
        n = len(bars)
        edge = cfg.edge_bars

        deltas = np.array([b.delta for b in bars], dtype=np.float64)
        buys = np.array([b.buy_volume for b in bars], dtype=np.float64)
        sells = np.array([b.sell_volume for b in bars], dtype=np.float64)
        highs = np.array([b.high for b in bars], dtype=np.float64)
        lows = np.array([b.low for b in bars], dtype=np.float64)

        f[0] = deltas.sum() / (atr_safe * n)
        if n >= edge * 2:
            f[1] = (deltas[-edge:].mean() - deltas[:edge].mean()) / atr_safe
        f[2] = trigger_delta_ewm / atr_safe

        total_volume = buys.sum() + sells.sum()
        f[3] = safe_divide(buys.sum(), total_volume, default=0.5)

        bull_sum = sum(b.bullish_imbalance_count for b in bars)
        bear_sum = sum(b.bearish_imbalance_count for b in bars)
        f[4] = (bull_sum - bear_sum) / n
        f[5] = (bull_sum + bear_sum) / n

        window_high = highs.max()
        window_low = lows.min()
        span = window_high - window_low
        close = current_bar.close
        f[6] = (close - window_low) / span if span > cfg.channel_epsilon else 0.5
        f[7] = (close - window_high) / atr_safe
        f[8] = (close - window_low) / atr_safe

        f[9] = np.count_nonzero((highs - lows) < current_bar.range) / n

        avg_volume = total_volume / n
        current_volume = current_bar.buy_volume + current_bar.sell_volume
        f[10] = safe_divide(current_volume, avg_volume, default=1.0)

        cumulative = np.array([b.cumulative_delta for b in bars], dtype=np.float64)
        cd_std = _population_std(cumulative)
        f[11] = safe_divide(current_bar.cumulative_delta - cumulative.mean(), cd_std)
