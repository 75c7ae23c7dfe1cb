"""
Technical Estimators

Trend, range and liquidity estimators driven by completed bars:

- EmaTracker: fast/slow EMA pair with spread, slope and cross tracking
- calculate_atr: simple-average true range over the last ``period`` pairs
- calculate_vwap: volume-weighted typical price over a window

ATR and VWAP are stateless per call; they read a window (usually a
RingBuffer) and return an explicit invalid result on degenerate input.
"""

from typing import Optional, Sequence
import time
import logging

import numpy as np

from .base import IncrementalTracker
from .results import AtrResult, VwapResult
from orderflow_engine.core.config import EmaConfig
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.data.buffer import RingBuffer

logger = logging.getLogger(__name__)


def true_range(high: float, low: float, previous_close: float) -> float:
    """True range of one bar against the previous close"""
    return max(high - low, abs(high - previous_close), abs(low - previous_close))


def calculate_atr(bars: Sequence[BarRecord], period: int = 14) -> AtrResult:
    """
    Average True Range over the most recent ``period`` bar pairs

    Args:
        bars: Window of bars, oldest first
        period: Number of true ranges averaged (must be >= 1)

    Returns:
        AtrResult, invalid when period < 1 or fewer than period + 1 bars
    """
    if period < 1 or bars is None or len(bars) < period + 1:
        return AtrResult.invalid()

    n = len(bars)
    ranges = np.empty(period, dtype=np.float64)
    for j, i in enumerate(range(n - period, n)):
        ranges[j] = true_range(bars[i].high, bars[i].low, bars[i - 1].close)

    return AtrResult.create(float(ranges.mean()))


def calculate_vwap(bars: Sequence[BarRecord], current_price: float) -> VwapResult:
    """
    Rolling VWAP of typical price over the window

    Args:
        bars: Window of bars, oldest first
        current_price: Reference price for the distance calculation

    Returns:
        VwapResult, invalid for an empty window or zero total volume
    """
    if bars is None or len(bars) == 0:
        return VwapResult.invalid()

    cumulative_tpv = 0.0
    cumulative_volume = 0
    for bar in bars:
        cumulative_tpv += bar.typical_price * bar.volume
        cumulative_volume += bar.volume

    if cumulative_volume == 0:
        return VwapResult.invalid()

    vwap = cumulative_tpv / cumulative_volume
    return VwapResult.create(vwap, current_price - vwap)


class EmaTracker(IncrementalTracker):
    """
    Fast and slow EMAs from completed bars

    Exposes the spread between them, its change since the previous bar,
    the fast EMA's percentage slope over a short history, a discretized
    slow EMA slope and the number of bars since the last cross.
    """

    def __init__(self, config: Optional[EmaConfig] = None,
                 fast_period: Optional[int] = None, slow_period: Optional[int] = None):
        super().__init__()
        self.config = config or EmaConfig()
        self.fast_period = fast_period or self.config.fast_period
        self.slow_period = slow_period or self.config.slow_period

        self._slow_history: RingBuffer[float] = RingBuffer(self.config.slow_history_size)
        self._fast_slope_buffer: RingBuffer[float] = RingBuffer(self.config.slope_buffer_size)

        self._fast_ema = 0.0
        self._slow_ema = 0.0
        self._bar_count = 0
        self._prev_spread = 0.0
        self._last_spread_change = 0.0
        self._bars_since_cross = 0
        self._cross_direction = 0

        self.imbalance_net = 0
        self.slow_ema_slope = 0
        self.last_bar_delta = 0

    @property
    def fast_ema(self) -> float:
        return self._fast_ema

    @property
    def slow_ema(self) -> float:
        return self._slow_ema

    @property
    def bar_count(self) -> int:
        return self._bar_count

    @property
    def spread(self) -> float:
        return self._fast_ema - self._slow_ema

    @property
    def spread_change(self) -> float:
        return self._last_spread_change

    @property
    def bars_since_cross(self) -> int:
        return self._bars_since_cross

    @property
    def cross_direction(self) -> int:
        return self._cross_direction

    @property
    def fast_ema_slope(self) -> float:
        """Percent change of the fast EMA across its slope buffer"""
        if len(self._fast_slope_buffer) < 2:
            return 0.0
        oldest = self._fast_slope_buffer.oldest
        newest = self._fast_slope_buffer.newest
        if abs(oldest) < self.config.slope_epsilon:
            return 0.0
        return (newest - oldest) / oldest * 100.0

    def process_bar(self, bar: BarRecord, atr: Optional[float] = None) -> None:
        """Advance both EMAs with a completed bar"""
        start = time.perf_counter()
        self._bar_count += 1

        slow_multiplier = 2.0 / (self.slow_period + 1)
        fast_multiplier = 2.0 / (self.fast_period + 1)
        if self._bar_count == 1:
            self._slow_ema = bar.close
            self._fast_ema = bar.close
        else:
            self._slow_ema = (bar.close - self._slow_ema) * slow_multiplier + self._slow_ema
            self._fast_ema = (bar.close - self._fast_ema) * fast_multiplier + self._fast_ema

        self._slow_history.append(self._slow_ema)
        self._fast_slope_buffer.append(self._fast_ema)

        current_spread = self._fast_ema - self._slow_ema
        self._last_spread_change = current_spread - self._prev_spread if self._bar_count > 1 else 0.0
        current_cross = 1 if current_spread >= 0 else -1

        if self._bar_count == 1:
            self._cross_direction = current_cross
            self._bars_since_cross = 0
        elif current_cross != self._cross_direction:
            self._cross_direction = current_cross
            self._bars_since_cross = 0
        else:
            self._bars_since_cross += 1

        self._prev_spread = current_spread

        self.last_bar_delta = bar.delta
        self.imbalance_net = bar.imbalance_net
        self.slow_ema_slope = self._compute_slow_ema_slope()
        self._record_latency(start)

    def reset(self) -> None:
        self._fast_ema = 0.0
        self._slow_ema = 0.0
        self._bar_count = 0
        self._prev_spread = 0.0
        self._last_spread_change = 0.0
        self._bars_since_cross = 0
        self._cross_direction = 0
        self.imbalance_net = 0
        self.slow_ema_slope = 0
        self.last_bar_delta = 0
        self._slow_history.clear()
        self._fast_slope_buffer.clear()

    def _compute_slow_ema_slope(self) -> int:
        # Newest vs the value two appends earlier (third from the end)
        count = len(self._slow_history)
        if count < 3:
            return 0

        diff = self._slow_history[count - 1] - self._slow_history[count - 3]
        if abs(diff) < self.config.slope_flat_threshold:
            return 0
        return 1 if diff > 0 else -1
