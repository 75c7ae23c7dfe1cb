"""
Analysis Results

Immutable result objects returned by the estimators and trackers. Every
result carries an ``is_valid`` flag; the ``invalid()`` constructors carry
zeroed fields and must be checked before their values are consumed.
Immutability lets a broadcast layer hand results to other threads
without copying tracker internals.
"""

from dataclasses import dataclass, field, asdict
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class AtrResult:
    """Average true range over the most recent period"""
    current_atr: float = 0.0
    is_valid: bool = False

    @classmethod
    def create(cls, current_atr: float) -> "AtrResult":
        return cls(current_atr=current_atr, is_valid=True)

    @classmethod
    def invalid(cls) -> "AtrResult":
        return cls()


@dataclass(frozen=True)
class VwapResult:
    """Rolling VWAP and the reference price's distance from it"""
    vwap: float = 0.0
    price_distance: float = 0.0
    is_valid: bool = False

    @classmethod
    def create(cls, vwap: float, price_distance: float) -> "VwapResult":
        return cls(vwap=vwap, price_distance=price_distance, is_valid=True)

    @classmethod
    def invalid(cls) -> "VwapResult":
        return cls()


@dataclass(frozen=True)
class HighVolumeNode:
    """A price level ranked by traded volume"""
    price: float
    volume: int


@dataclass(frozen=True)
class VolumeProfileResult:
    """Point of control, value area and high-volume nodes of a profile"""
    is_valid: bool = False
    poc: float = 0.0
    vah: float = 0.0
    val: float = 0.0
    price_volumes: Mapping[float, int] = field(default_factory=lambda: MappingProxyType({}),
                                               compare=False, repr=False)
    max_volume: int = 0
    total_volume: int = 0
    high_volume_nodes: Tuple[HighVolumeNode, ...] = ()

    @classmethod
    def create(cls, poc: float, vah: float, val: float, price_volumes: Mapping[float, int],
               max_volume: int, total_volume: int,
               high_volume_nodes: Tuple[HighVolumeNode, ...] = ()) -> "VolumeProfileResult":
        return cls(
            is_valid=True,
            poc=poc,
            vah=vah,
            val=val,
            price_volumes=MappingProxyType(dict(price_volumes)),
            max_volume=max_volume,
            total_volume=total_volume,
            high_volume_nodes=tuple(high_volume_nodes),
        )

    @classmethod
    def invalid(cls) -> "VolumeProfileResult":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'poc': self.poc,
            'vah': self.vah,
            'val': self.val,
            'max_volume': self.max_volume,
            'total_volume': self.total_volume,
            'price_volumes': dict(self.price_volumes),
            'high_volume_nodes': [asdict(node) for node in self.high_volume_nodes],
        }


@dataclass(frozen=True)
class OrderFlowMetricsResult:
    """Rolling-window order-flow metrics for one timeframe"""
    # POC migration
    poc_migration: float = 0.0
    poc_direction: int = 0
    poc_trend_strength: float = 0.0

    # Value area
    va_overlap: float = 0.0
    va_migration: int = 0
    va_width: float = 0.0
    is_compressing: bool = False
    compression_rate: float = 0.0

    # Imbalance
    imbalance_polarity: float = 0.0
    is_polarized: bool = False
    setup_density: float = 0.0

    # VWAP
    vwap_slope: float = 0.0
    vwap_regime: int = 0

    # Delta
    rolling_delta: float = 0.0
    rolling_delta_direction: int = 0
    rolling_delta_momentum: float = 0.0

    # Volume
    volume_trend: float = 0.0

    # Agreement and conviction
    poc_vwap_agreement: bool = False
    conviction_score: int = 0
    conviction_direction: int = 0

    is_valid: bool = False

    @classmethod
    def create(cls, **values) -> "OrderFlowMetricsResult":
        return cls(is_valid=True, **values)

    @classmethod
    def invalid(cls) -> "OrderFlowMetricsResult":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
