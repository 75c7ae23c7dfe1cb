"""
Order-Flow Feature Engine

Incremental, per-bar analytics over volumetric bars, assembled into a
fixed 30-slot feature vector for the dashboard and decision layer.

Feature Groups:
- Trigger rolling (12 features) - delta, imbalance, channel, volume stats
- Bias bar (10 features) - delta, EMA distance, z-score, channel
- Bias cluster (5 features) - imbalance support/resistance zones
- Session context (3 features) - session progress, imbalance distances

Components:
- Technical estimators: EMA tracker, ATR, VWAP
- Volume profile: POC, value area, high-volume nodes
- Imbalance cluster tracker: rolling bucket votes
- Order-flow metrics tracker: migration, compression, conviction
- DataSeriesManager: base/bias/trigger orchestration
"""

from .base import (
    FEATURE_NAMES,
    FEATURE_SPECS,
    NUM_ENRICHED_FEATURES,
    FeatureSpec,
    IncrementalTracker,
    feature_descriptions,
    feature_series
)

from .results import (
    AtrResult,
    VwapResult,
    HighVolumeNode,
    VolumeProfileResult,
    OrderFlowMetricsResult
)

from .technical import (
    EmaTracker,
    calculate_atr,
    calculate_vwap,
    true_range
)

from .microstructure import (
    aggregate_price_volumes,
    calculate_volume_profile
)

from .clusters import ImbalanceClusterTracker

from .orderflow import (
    OrderFlowMetricsTracker,
    is_divergence_confirmed,
    is_volume_skew
)

from .enriched import EnrichedFeatureComputer

from .series import (
    DataSeriesManager,
    SeriesSnapshot
)

__all__ = [
    "FEATURE_NAMES",
    "FEATURE_SPECS",
    "NUM_ENRICHED_FEATURES",
    "FeatureSpec",
    "IncrementalTracker",
    "feature_descriptions",
    "feature_series",
    "AtrResult",
    "VwapResult",
    "HighVolumeNode",
    "VolumeProfileResult",
    "OrderFlowMetricsResult",
    "EmaTracker",
    "calculate_atr",
    "calculate_vwap",
    "true_range",
    "aggregate_price_volumes",
    "calculate_volume_profile",
    "ImbalanceClusterTracker",
    "OrderFlowMetricsTracker",
    "is_divergence_confirmed",
    "is_volume_skew",
    "EnrichedFeatureComputer",
    "DataSeriesManager",
    "SeriesSnapshot"
]
