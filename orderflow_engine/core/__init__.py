"""
Core services: configuration, structured logging, timing and numeric helpers.
"""

from .config import (
    ConfigManager,
    EngineConfig,
    get_config_manager,
    load_config,
)
from .exceptions import (
    ConfigurationError,
    OrderFlowEngineError,
    SeriesNotInitializedError,
)
from .logging import PerformanceLogger, get_perf_logger, setup_logging
from .utils import Timer, direction, safe_divide

__all__ = [
    "ConfigManager",
    "EngineConfig",
    "get_config_manager",
    "load_config",
    "ConfigurationError",
    "OrderFlowEngineError",
    "SeriesNotInitializedError",
    "PerformanceLogger",
    "get_perf_logger",
    "setup_logging",
    "Timer",
    "direction",
    "safe_divide",
]
