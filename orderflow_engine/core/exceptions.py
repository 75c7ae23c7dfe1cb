"""
Engine Exceptions

Only programmer and setup errors raise. Degenerate market data (empty
windows, zero volume, non-positive ATR) never raises: the analysis layer
returns explicit invalid results instead.
"""


class OrderFlowEngineError(Exception):
    """Base class for engine errors"""
    pass


class ConfigurationError(OrderFlowEngineError):
    """Configuration loading or validation error"""
    pass


class SeriesNotInitializedError(OrderFlowEngineError):
    """Series manager used before initialize() or after cleanup()"""
    pass
