"""
Bar Records

Immutable per-bar OHLCV + order-flow snapshots. A bar is built once by the
extraction layer and never mutated; every derived quantity (positions in
range, delta bias, bar score, divergence) is a pure property.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ImbalanceSummary:
    """Imbalance statistics for a single bar"""
    bullish_count: int = 0
    bearish_count: int = 0
    bullish_volume_sum: int = 0
    bearish_volume_sum: int = 0
    # Volume-weighted average position inside the bar range, in [-1, +1]
    bullish_avg_position: float = 0.0
    bearish_avg_position: float = 0.0
    max_bullish_price: float = 0.0
    max_bullish_volume: int = 0
    max_bearish_price: float = 0.0
    max_bearish_volume: int = 0


@dataclass(frozen=True)
class BarRecord:
    """
    One fully closed bar with volumetric order-flow data

    ``price_volumes`` optionally carries the bar's price ladder
    (price -> total traded volume); it feeds the rolling volume profile.
    """
    timestamp: datetime
    index: int
    open: float
    high: float
    low: float
    close: float
    volume: int
    buy_volume: int = 0
    sell_volume: int = 0
    cumulative_delta: int = 0
    max_delta: int = 0
    min_delta: int = 0
    point_of_control: float = 0.0
    imbalance: ImbalanceSummary = field(default_factory=ImbalanceSummary)
    price_volumes: Optional[Mapping[float, int]] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.price_volumes is not None and not isinstance(self.price_volumes, MappingProxyType):
            object.__setattr__(self, 'price_volumes', MappingProxyType(dict(self.price_volumes)))

    @property
    def delta(self) -> int:
        """Buy volume minus sell volume"""
        return self.buy_volume - self.sell_volume

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def close_position(self) -> float:
        """0 = closed at the low, 1 = closed at the high"""
        return (self.close - self.low) / self.range if self.range > 0 else 0.5

    @property
    def open_position(self) -> float:
        return (self.open - self.low) / self.range if self.range > 0 else 0.5

    @property
    def poc_position(self) -> float:
        return (self.point_of_control - self.low) / self.range if self.range > 0 else 0.5

    @property
    def delta_bias(self) -> int:
        """+1 buyers aggressive, -1 sellers aggressive, 0 balanced"""
        delta = self.delta
        if delta > 0:
            return 1
        if delta < 0:
            return -1
        return 0

    @property
    def structural_alignment(self) -> float:
        """Average of close and POC position (high = structure favors highs)"""
        return (self.close_position + self.poc_position) / 2.0

    @property
    def bar_score(self) -> float:
        """
        Combined bar score in [-1, +1]

        Delta bias picks the side, structural alignment the magnitude:
        bullish bars map to [0, 1], bearish bars to [-1, 0].
        """
        bias = self.delta_bias
        if bias > 0:
            return self.structural_alignment
        if bias < 0:
            return self.structural_alignment - 1.0
        return 0.0

    @property
    def body_percent(self) -> float:
        return abs(self.close - self.open) / self.range if self.range > 0 else 0.0

    @property
    def is_divergent(self) -> bool:
        """Delta sign disagrees with bar color (hidden buying or selling)"""
        delta = self.delta
        return (delta > 0 and self.is_bearish) or (delta < 0 and self.is_bullish)

    # Flat accessors used by the trackers and the payload layer

    @property
    def bullish_imbalance_count(self) -> int:
        return self.imbalance.bullish_count

    @property
    def bearish_imbalance_count(self) -> int:
        return self.imbalance.bearish_count

    @property
    def imbalance_net(self) -> int:
        return self.imbalance.bullish_count - self.imbalance.bearish_count

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict snapshot including derived fields"""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['imbalance'] = asdict(self.imbalance)
        data['price_volumes'] = dict(self.price_volumes) if self.price_volumes is not None else None
        data.update({
            'delta': self.delta,
            'range': self.range,
            'bar_score': self.bar_score,
            'is_divergent': self.is_divergent,
            'close_position': self.close_position,
            'open_position': self.open_position,
            'poc_position': self.poc_position,
        })
        return data
