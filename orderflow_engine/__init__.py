"""
Order-Flow Engine

Streaming order-flow analytics over volumetric bars. Completed bars from
three synchronized series (base, bias, trigger) are folded into rolling
trackers that produce trend, range, volume-profile, imbalance-cluster and
order-flow metrics, plus a fixed 30-slot feature vector consumed by a
dashboard or decision layer.

Key Features:
- O(1) bounded rolling windows
- Deterministic POC / value-area computation
- Incremental imbalance support/resistance zones
- Conviction scoring from six independent order-flow checks
- Explicit invalid results instead of exceptions on degenerate data
"""

__version__ = "1.0.0"

# Core imports for easy access
from orderflow_engine.core.config import ConfigManager, EngineConfig
from orderflow_engine.core.logging import setup_logging
from orderflow_engine.core.utils import Timer
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.features.series import DataSeriesManager, SeriesSnapshot

__all__ = [
    "ConfigManager",
    "EngineConfig",
    "setup_logging",
    "Timer",
    "BarRecord",
    "DataSeriesManager",
    "SeriesSnapshot",
]
