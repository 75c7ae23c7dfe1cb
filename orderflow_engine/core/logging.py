"""
Structured Logging System

Logging for the order-flow engine. Library modules log through
``logging.getLogger(__name__)``; per-bar telemetry (processing latency and
the assembled feature vector) goes through ``PerformanceLogger`` as
structlog key/value events, routed to dedicated files when file output is
enabled.

Features:
- JSON or plain-text formatting selected by ``LoggingConfig.structured``
- Per-operation latency statistics with a budget counter
- Feature-vector events keyed by wire name
- Rotating engine, feature and error logs

Time Complexity: O(1) per event
Space Complexity: O(k) for k distinct timed operations
"""

import logging
import logging.handlers
import structlog
import sys
import json
from pathlib import Path
from typing import Dict, Any, Optional, Sequence
from datetime import datetime, timezone
import psutil
import os
from contextlib import contextmanager
from dataclasses import dataclass
import time
import threading

from .config import LoggingConfig
from .utils import LATENCY_BUDGET_MS

_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord('', 0, '', 0, '', None, None).__dict__
) | {'message', 'asctime', 'taskName'}

_TELEMETRY_TYPES = ('features', 'latency')


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_RECORD_ATTRS}


def _is_latency_event(record: logging.LogRecord) -> bool:
    return (getattr(record, 'log_type', None) == 'latency'
            or 'latency_measurement' in record.getMessage())


class ContextualFilter(logging.Filter):
    """Stamp process identity on records, plus resource usage on latency events"""

    def __init__(self, name: str = ''):
        super().__init__(name)
        self._process = psutil.Process()

    def filter(self, record):
        record.pid = os.getpid()
        record.thread_id = threading.get_ident()
        if _is_latency_event(record):
            record.cpu_percent = self._process.cpu_percent()
            record.memory_mb = self._process.memory_info().rss / 1024 / 1024
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras flattened in"""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        entry.update(_record_extras(record))
        return json.dumps(entry, default=str)


class FeatureRecordFilter(logging.Filter):
    """Pass only feature-vector and latency events"""

    def filter(self, record):
        if getattr(record, 'log_type', None) in _TELEMETRY_TYPES:
            return True
        message = record.getMessage()
        return 'feature_vector' in message or 'latency_measurement' in message


@dataclass
class LatencyStats:
    """Running latency statistics for one operation"""
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    over_budget: int = 0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def add(self, latency_ms: float, budget_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.max_ms = max(self.max_ms, latency_ms)
        if latency_ms > budget_ms:
            self.over_budget += 1


_STDLIB_PROCESSORS = (
    structlog.stdlib.filter_by_level,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.stdlib.render_to_log_kwargs,
)


def _stdlib_logger(name: str):
    """
    structlog logger that hands events to the stdlib logger ``name``

    Levels and handlers of the stdlib tree decide what is emitted, so debug
    telemetry stays silent until the application enables it.
    """
    return structlog.wrap_logger(
        logging.getLogger(name),
        wrapper_class=structlog.stdlib.BoundLogger,
        processors=list(_STDLIB_PROCESSORS),
    )


class PerformanceLogger:
    """
    Structured telemetry for the per-bar pipeline

    Latency events are also folded into ``LatencyStats`` per operation so a
    session summary is available without parsing log files.
    """

    def __init__(self, name: str = "orderflow_engine", budget_ms: float = LATENCY_BUDGET_MS,
                 logger=None):
        self.logger = logger if logger is not None else _stdlib_logger(name)
        self.budget_ms = budget_ms
        self._latency: Dict[str, LatencyStats] = {}

    def bind(self, **context) -> 'PerformanceLogger':
        """Logger sharing these statistics with extra context on every event"""
        bound = PerformanceLogger(budget_ms=self.budget_ms, logger=self.logger.bind(**context))
        bound._latency = self._latency
        return bound

    @contextmanager
    def timer(self, operation: str):
        """Time a block and record it as a latency event"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.log_latency(operation, (time.perf_counter() - start) * 1000)

    def log_latency(self, operation: str, latency_ms: float):
        stats = self._latency.setdefault(operation, LatencyStats())
        stats.add(latency_ms, self.budget_ms)
        self.logger.debug(
            "latency_measurement",
            log_type="latency",
            operation=operation,
            latency_ms=latency_ms,
            over_budget=latency_ms > self.budget_ms,
        )

    def log_features(self, names: Sequence[str], values: Sequence[float], **context):
        """Log a feature vector keyed by its wire names"""
        self.logger.debug(
            "feature_vector",
            log_type="features",
            features={name: float(value) for name, value in zip(names, values)},
            **context
        )

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        self.logger.error(
            "error_occurred",
            log_type="error",
            error_type=type(error).__name__,
            error_message=str(error),
            exc_info=error,
            **(context or {})
        )

    def latency_summary(self) -> Dict[str, Dict[str, float]]:
        """Per-operation count, mean, max and over-budget count"""
        return {
            op: {
                'count': s.count,
                'mean_ms': s.mean_ms,
                'max_ms': s.max_ms,
                'over_budget': s.over_budget,
            }
            for op, s in self._latency.items()
        }

    def reset_latency(self) -> None:
        self._latency.clear()


def _rotating_handler(path: Path, formatter: logging.Formatter, max_bytes: int,
                      backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    config: Optional[LoggingConfig] = None,
    max_bytes: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5
) -> PerformanceLogger:
    """
    Configure structlog and the stdlib root logger from ``LoggingConfig``

    Args:
        config: Logging section of the engine config (defaults apply if None)
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The global PerformanceLogger
    """
    config = config or LoggingConfig()

    # Events render through the stdlib handlers below; the formatter picks JSON or text
    structlog.configure(
        processors=list(_STDLIB_PROCESSORS),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level)
    root_logger.handlers.clear()

    if config.structured:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(ContextualFilter())
        root_logger.addHandler(console_handler)

    if config.file_output:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        engine_handler = _rotating_handler(log_dir / "engine.log", formatter, max_bytes, backup_count)
        engine_handler.addFilter(ContextualFilter())
        root_logger.addHandler(engine_handler)

        feature_handler = _rotating_handler(log_dir / "features.log", formatter, max_bytes, backup_count)
        feature_handler.addFilter(FeatureRecordFilter())
        root_logger.addHandler(feature_handler)

        error_handler = _rotating_handler(log_dir / "errors.log", formatter, max_bytes, backup_count)
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

    logging.getLogger("numba").setLevel(logging.WARNING)

    global _perf_logger
    _perf_logger = PerformanceLogger()
    _perf_logger.logger.info("logging_initialized", log_config=config.model_dump())
    return _perf_logger


_perf_logger: Optional[PerformanceLogger] = None


def get_perf_logger() -> PerformanceLogger:
    """Shared PerformanceLogger; never touches handlers"""
    global _perf_logger
    if _perf_logger is None:
        _perf_logger = PerformanceLogger()
    return _perf_logger
