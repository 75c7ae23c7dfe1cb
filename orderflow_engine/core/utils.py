"""
Core Utilities for the Order-Flow Engine

Timing helpers for the per-bar latency budget and small numeric kernels
shared by the rolling trackers. The kernels are compiled with Numba so
that the regression and decay-weighting loops stay cheap when the
engine is replayed over long histories.

Time Complexity: O(1) for most operations, O(n) over a window where noted
Space Complexity: O(1) per operation unless noted
"""

import time
import warnings
from datetime import datetime, time as dt_time, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import numpy as np
from numba import njit
import logging

logger = logging.getLogger(__name__)

# Per-bar budget; anything slower than this is worth a warning
LATENCY_BUDGET_MS = 5.0


@dataclass
class TimingResult:
    """Outcome of one timed block"""
    operation: str
    duration_ms: float
    timestamp: datetime
    success: bool
    over_budget: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class Timer:
    """
    Wall-clock timer checked against the per-bar latency budget

    Used as a context manager around one bar's processing; a block slower
    than ``budget_ms`` logs a warning. Exceptions propagate and are recorded
    as an unsuccessful result.
    """

    def __init__(self, operation: str = "operation", budget_ms: float = LATENCY_BUDGET_MS):
        self.operation = operation
        self.budget_ms = budget_ms
        self._started: Optional[float] = None
        self.duration_ms: Optional[float] = None
        self.result: Optional[TimingResult] = None

    def start(self) -> None:
        self._started = time.perf_counter()
        self.duration_ms = None
        self.result = None

    def stop(self) -> float:
        """Duration in milliseconds since ``start``"""
        if self._started is None:
            raise ValueError("Timer not started")
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        self._started = None
        return self.duration_ms

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = self.stop()
        over_budget = duration > self.budget_ms
        self.result = TimingResult(
            operation=self.operation,
            duration_ms=duration,
            timestamp=datetime.now(timezone.utc),
            success=exc_type is None,
            over_budget=over_budget,
            metadata={'exc_type': exc_type.__name__} if exc_type else {},
        )
        if over_budget:
            logger.warning(f"{self.operation} exceeded latency budget: "
                           f"{duration:.2f}ms > {self.budget_ms:.2f}ms")
        return False


def safe_divide(numerator: Union[float, np.ndarray],
                denominator: Union[float, np.ndarray],
                default: float = 0.0) -> Union[float, np.ndarray]:
    """Elementwise division replacing non-finite results with ``default``"""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        result = np.divide(numerator, denominator)

    if isinstance(result, np.ndarray):
        return np.where(np.isfinite(result), result, default)

    return float(result) if np.isfinite(result) else default


def direction(value: float, dead_zone: float) -> int:
    """Sign of value with a symmetric dead-zone: +1, -1 or 0"""
    if value > dead_zone:
        return 1
    if value < -dead_zone:
        return -1
    return 0


def minutes_of_day(session_time: Union[datetime, dt_time, int]) -> float:
    """
    Minutes since midnight for a session timestamp

    Args:
        session_time: datetime, time, or an HHMMSS integer (e.g. 93000)

    Returns:
        Fractional minutes since midnight
    """
    if isinstance(session_time, (datetime, dt_time)):
        return session_time.hour * 60.0 + session_time.minute + session_time.second / 60.0

    hhmmss = int(session_time)
    hours = hhmmss // 10000
    minutes = (hhmmss % 10000) // 100
    seconds = hhmmss % 100
    return hours * 60.0 + minutes + seconds / 60.0


# Optimized numerical functions using Numba

@njit(cache=True)
def fast_linear_slope(values: np.ndarray) -> float:
    """
    Closed-form least-squares slope of values against their index

    Returns 0 when fewer than 2 samples or the denominator is not positive.

    Time Complexity: O(n)
    Space Complexity: O(1)
    """
    n = len(values)
    if n < 2:
        return 0.0

    sum_x = 0.0
    sum_y = 0.0
    sum_xy = 0.0
    sum_x2 = 0.0
    for i in range(n):
        x = float(i)
        y = values[i]
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    denom = n * sum_x2 - sum_x * sum_x
    if denom <= 0.0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom


@njit(cache=True)
def fast_decay_weighted_efficiency(deltas: np.ndarray, oldest_weight: float) -> float:
    """
    Decay-weighted directional efficiency of a delta window, in percent

    The newest sample weighs 1.0 and the oldest weighs ``oldest_weight``;
    the decay factor is solved per window length so that ratio holds for
    any n. Returns 0 for an empty window or zero total activity.

    Time Complexity: O(n)
    Space Complexity: O(1)
    """
    n = len(deltas)
    if n == 0:
        return 0.0

    decay = oldest_weight ** (1.0 / (n - 1)) if n > 1 else 1.0

    weighted_net = 0.0
    weighted_total = 0.0
    for i in range(n):
        weight = decay ** (n - 1 - i)
        weighted_net += deltas[i] * weight
        weighted_total += abs(deltas[i]) * weight

    if weighted_total <= 0.0:
        return 0.0
    return abs(weighted_net) / weighted_total * 100.0
