"""
Bar Validation

Lightweight structural checks on incoming bars. Problems are reported,
not raised: a malformed bar from the extraction layer is logged and still
processed, since every downstream estimator already degrades to an
invalid result on degenerate input.
"""

from dataclasses import dataclass, field
from typing import List
import logging

from .bars import BarRecord

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result from validating one bar"""
    bar_index: int
    issues: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues


def validate_bar(bar: BarRecord) -> ValidationResult:
    """
    Check a bar for structural inconsistencies

    Args:
        bar: Bar to check

    Returns:
        ValidationResult listing every issue found
    """
    result = ValidationResult(bar_index=bar.index)

    if bar.high < bar.low:
        result.issues.append(f"high {bar.high} below low {bar.low}")
    else:
        if not bar.low <= bar.close <= bar.high:
            result.issues.append(f"close {bar.close} outside range [{bar.low}, {bar.high}]")
        if not bar.low <= bar.open <= bar.high:
            result.issues.append(f"open {bar.open} outside range [{bar.low}, {bar.high}]")

    if bar.volume < 0:
        result.issues.append(f"negative volume {bar.volume}")
    if bar.buy_volume < 0 or bar.sell_volume < 0:
        result.issues.append("negative buy/sell volume")
    elif bar.volume > 0 and bar.buy_volume + bar.sell_volume > bar.volume:
        result.issues.append(
            f"buy+sell volume {bar.buy_volume + bar.sell_volume} exceeds bar volume {bar.volume}"
        )

    imbalance = bar.imbalance
    if imbalance.bullish_count < 0 or imbalance.bearish_count < 0:
        result.issues.append("negative imbalance count")

    return result


def log_bar_issues(bar: BarRecord, series: str) -> bool:
    """Validate a bar and log any issues; returns True when the bar is clean"""
    result = validate_bar(bar)
    for issue in result.issues:
        logger.warning(f"{series} bar {bar.index}: {issue}")
    return result.passed
