"""
Base Feature Framework

Shared definitions for the incremental feature trackers:

- FEATURE_NAMES / FEATURE_SPECS: the 30-slot enriched feature vector. The
  order and spelling of the names are a wire contract with the payload
  serializer and must not change.
- IncrementalTracker: abstract base for stateful per-bar trackers, with a
  reset contract and per-call latency statistics.
- feature_series: labels a raw vector for logging and analysis.

Time Complexity: O(1) per tracker call overhead
Space Complexity: O(k) for the bounded latency history
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Sequence, Tuple
import time
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

NUM_ENRICHED_FEATURES = 30


@dataclass(frozen=True)
class FeatureSpec:
    """Definition of one slot of the enriched feature vector"""
    index: int
    name: str
    category: str
    description: str


FEATURE_SPECS: Tuple[FeatureSpec, ...] = (
    FeatureSpec(0, "T_DeltaSum", "trigger_rolling", "Mean trigger delta over the window / ATR"),
    FeatureSpec(1, "T_DeltaShift", "trigger_rolling", "Mean delta of last edge bars minus first edge bars / ATR"),
    FeatureSpec(2, "T_DeltaMomentum", "trigger_rolling", "Exponentially weighted trigger delta / ATR"),
    FeatureSpec(3, "T_BuyPct", "trigger_rolling", "Buy volume fraction of the window"),
    FeatureSpec(4, "T_ImbNet", "trigger_rolling", "Mean (bullish - bearish) imbalance count"),
    FeatureSpec(5, "T_ImbIntensity", "trigger_rolling", "Mean (bullish + bearish) imbalance count"),
    FeatureSpec(6, "T_ChannelPos", "trigger_rolling", "Close position in the window high/low channel"),
    FeatureSpec(7, "T_ChannelHighDist", "trigger_rolling", "(close - window high) / ATR"),
    FeatureSpec(8, "T_ChannelLowDist", "trigger_rolling", "(close - window low) / ATR"),
    FeatureSpec(9, "T_RangePctl", "trigger_rolling", "Share of window bars with a smaller range"),
    FeatureSpec(10, "T_VolumeRatio", "trigger_rolling", "Current bar volume / window average"),
    FeatureSpec(11, "T_CumDeltaZScore", "trigger_rolling", "Z-score of cumulative delta vs the window"),
    FeatureSpec(12, "B_Delta", "bias_bar", "Bias bar delta / ATR"),
    FeatureSpec(13, "B_ImbNet", "bias_bar", "Bias bar bullish - bearish imbalance count"),
    FeatureSpec(14, "B_ClosePos", "bias_bar", "Bias bar close position in range"),
    FeatureSpec(15, "B_SlowEmaDist", "bias_bar", "(close - slow EMA) / ATR"),
    FeatureSpec(16, "B_ZScore", "bias_bar", "(close - slow EMA) / std of recent closes"),
    FeatureSpec(17, "B_StdDev", "bias_bar", "Std of recent closes / ATR"),
    FeatureSpec(18, "B_ChannelPos", "bias_bar", "Close position in the recent high/low channel"),
    FeatureSpec(19, "B_ChannelHighDist", "bias_bar", "(close - channel high) / ATR"),
    FeatureSpec(20, "B_ChannelLowDist", "bias_bar", "(close - channel low) / ATR"),
    FeatureSpec(21, "B_Range", "bias_bar", "Bias bar range / ATR"),
    FeatureSpec(22, "B_ClusterSupport", "bias_cluster", "Bullish cluster strength at close / norm"),
    FeatureSpec(23, "B_ClusterResistance", "bias_cluster", "Bearish cluster strength at close / norm"),
    FeatureSpec(24, "B_ClusterNet", "bias_cluster", "(support - resistance) strength / norm"),
    FeatureSpec(25, "B_NearestSupportDist", "bias_cluster", "Distance to nearest support zone / ATR"),
    FeatureSpec(26, "B_NearestResistanceDist", "bias_cluster", "Distance to nearest resistance zone / ATR"),
    FeatureSpec(27, "SessionProgress", "session", "Clamped progress through the regular session"),
    FeatureSpec(28, "MaxBullImbDist", "session", "(close - largest bullish imbalance price) / ATR"),
    FeatureSpec(29, "MaxBearImbDist", "session", "(close - largest bearish imbalance price) / ATR"),
)

FEATURE_NAMES: Tuple[str, ...] = tuple(spec.name for spec in FEATURE_SPECS)


def feature_series(vector: Sequence[float]) -> pd.Series:
    """Label a feature vector with its wire names"""
    if len(vector) != NUM_ENRICHED_FEATURES:
        raise ValueError(f"Expected {NUM_ENRICHED_FEATURES} features, got {len(vector)}")
    return pd.Series(np.asarray(vector, dtype=np.float64), index=list(FEATURE_NAMES), name="features")


def feature_descriptions() -> Dict[str, str]:
    """Feature name -> description"""
    return {spec.name: spec.description for spec in FEATURE_SPECS}


class IncrementalTracker(ABC):
    """
    Abstract base class for stateful per-bar trackers

    Subclasses mutate their state once per completed bar and must restore
    their freshly-constructed state in ``reset``. Latency of tracked calls
    is kept in a bounded history for diagnostics.
    """

    max_latency_samples = 1000

    def __init__(self):
        self.computation_times: Deque[float] = deque(maxlen=self.max_latency_samples)

    @abstractmethod
    def reset(self) -> None:
        """Clear all rolling state"""
        pass

    def _record_latency(self, start: float) -> None:
        self.computation_times.append((time.perf_counter() - start) * 1000)

    def get_performance_stats(self) -> Dict[str, Any]:
        """Latency statistics of tracked calls"""
        if not self.computation_times:
            return {}

        times = np.fromiter(self.computation_times, dtype=np.float64)
        return {
            'avg_latency_ms': float(np.mean(times)),
            'max_latency_ms': float(np.max(times)),
            'min_latency_ms': float(np.min(times)),
            'std_latency_ms': float(np.std(times)),
            'total_computations': len(times)
        }

    def reset_performance_stats(self) -> None:
        """Reset latency statistics"""
        self.computation_times.clear()
