"""
Data Layer for the Order-Flow Engine

Immutable bar records, the bounded ring buffer behind every rolling
window, vendor-neutral extraction of volumetric bars and bar validation.

Key Components:
- RingBuffer: fixed-capacity FIFO with O(1) append and oldest-overwrite
- BarRecord / ImbalanceSummary: per-bar OHLCV + order-flow snapshot
- LadderBarBuilder: bid/ask ladder -> BarRecord with imbalance detection
- validate_bar: structural checks reported as warnings
"""

from .buffer import RingBuffer

from .bars import (
    BarRecord,
    ImbalanceSummary
)

from .extraction import (
    LadderBarBuilder,
    LadderLevel,
    bars_from_frame,
    round_to_tick
)

from .validation import (
    ValidationResult,
    validate_bar,
    log_bar_issues
)

__all__ = [
    "RingBuffer",
    "BarRecord",
    "ImbalanceSummary",
    "LadderBarBuilder",
    "LadderLevel",
    "bars_from_frame",
    "round_to_tick",
    "ValidationResult",
    "validate_bar",
    "log_bar_issues"
]
