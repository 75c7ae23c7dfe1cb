"""
Imbalance Cluster Tracking

Accumulates imbalance "votes" over price buckets across a rolling window
of bars. Bullish imbalances vote for the lower half of their bar's range
(buyers defended it), bearish imbalances for the upper half. Where many
recent bars voted, the bucket acts as support or resistance.

The aggregate vote maps are maintained incrementally: a zone's votes are
added on insertion and subtracted when it is evicted, and buckets whose
count falls to zero or below are dropped so the maps only hold active
buckets.

Time Complexity: O(B) per bar where B is the number of buckets in the bar
Space Complexity: O(lookback * B)
"""

from dataclasses import dataclass, field
from typing import Dict, Optional
import time
import logging

from .base import IncrementalTracker
from orderflow_engine.core.config import ClusterConfig
from orderflow_engine.data.buffer import RingBuffer

logger = logging.getLogger(__name__)


@dataclass
class ClusterZone:
    """Bucket votes contributed by one bar"""
    bull_votes: Dict[int, int] = field(default_factory=dict)
    bear_votes: Dict[int, int] = field(default_factory=dict)


class ImbalanceClusterTracker(IncrementalTracker):
    """Rolling bucket votes of bullish and bearish imbalances"""

    def __init__(self, lookback: Optional[int] = None, bucket_size: Optional[float] = None,
                 config: Optional[ClusterConfig] = None):
        super().__init__()
        self.config = config or ClusterConfig()
        self.lookback = lookback if lookback is not None else self.config.lookback
        self.bucket_size = bucket_size if bucket_size is not None else self.config.bucket_size
        if self.bucket_size <= 0:
            raise ValueError(f"bucket_size must be positive, got {self.bucket_size}")

        self._zones: RingBuffer[ClusterZone] = RingBuffer(self.lookback)
        self._bull_votes: Dict[int, int] = {}
        self._bear_votes: Dict[int, int] = {}

    @property
    def zone_count(self) -> int:
        return len(self._zones)

    @property
    def active_bull_buckets(self) -> int:
        return len(self._bull_votes)

    @property
    def active_bear_buckets(self) -> int:
        return len(self._bear_votes)

    def bucket(self, price: float) -> int:
        return int(round(price / self.bucket_size))

    def add_bar(self, high: float, low: float, bullish_count: int, bearish_count: int) -> None:
        """Register one bar's imbalances and evict the oldest zone when full"""
        start = time.perf_counter()

        if self._zones.is_full:
            oldest = self._zones.oldest
            self._subtract(self._bull_votes, oldest.bull_votes)
            self._subtract(self._bear_votes, oldest.bear_votes)

        zone = ClusterZone()
        bar_range = high - low
        if bar_range > 0:
            half = bar_range * 0.5
            if bullish_count > 0:
                for b in range(self.bucket(low), self.bucket(low + half) + 1):
                    zone.bull_votes[b] = bullish_count
            if bearish_count > 0:
                for b in range(self.bucket(high - half), self.bucket(high) + 1):
                    zone.bear_votes[b] = bearish_count

        self._zones.append(zone)
        self._add(self._bull_votes, zone.bull_votes)
        self._add(self._bear_votes, zone.bear_votes)
        self._record_latency(start)

    def get_bull_strength(self, price: float) -> int:
        """Bullish votes in the price's bucket and its two neighbours"""
        return self._strength(self._bull_votes, self.bucket(price))

    def get_bear_strength(self, price: float) -> int:
        """Bearish votes in the price's bucket and its two neighbours"""
        return self._strength(self._bear_votes, self.bucket(price))

    def find_nearest_support_dist(self, price: float, threshold: Optional[int] = None,
                                  max_buckets: Optional[int] = None) -> float:
        """
        Signed distance to the nearest bullish zone at or below price

        Returns bucket_price - price (<= 0 expected) for the first bucket
        whose 3-bucket bullish strength reaches threshold, or 0 when no
        bucket within max_buckets qualifies.
        """
        threshold = self.config.nearest_threshold if threshold is None else threshold
        max_buckets = self.config.nearest_max_buckets if max_buckets is None else max_buckets

        center = self.bucket(price)
        for offset in range(max_buckets + 1):
            b = center - offset
            if self._strength(self._bull_votes, b) >= threshold:
                return b * self.bucket_size - price
        return 0.0

    def find_nearest_resistance_dist(self, price: float, threshold: Optional[int] = None,
                                     max_buckets: Optional[int] = None) -> float:
        """Mirror of find_nearest_support_dist scanning upward over bearish votes"""
        threshold = self.config.nearest_threshold if threshold is None else threshold
        max_buckets = self.config.nearest_max_buckets if max_buckets is None else max_buckets

        center = self.bucket(price)
        for offset in range(max_buckets + 1):
            b = center + offset
            if self._strength(self._bear_votes, b) >= threshold:
                return b * self.bucket_size - price
        return 0.0

    def reset(self) -> None:
        self._zones.clear()
        self._bull_votes.clear()
        self._bear_votes.clear()

    @staticmethod
    def _strength(votes: Dict[int, int], center: int) -> int:
        return votes.get(center - 1, 0) + votes.get(center, 0) + votes.get(center + 1, 0)

    @staticmethod
    def _add(aggregate: Dict[int, int], zone_votes: Dict[int, int]) -> None:
        for b, count in zone_votes.items():
            aggregate[b] = aggregate.get(b, 0) + count

    @staticmethod
    def _subtract(aggregate: Dict[int, int], zone_votes: Dict[int, int]) -> None:
        for b, count in zone_votes.items():
            remaining = aggregate.get(b, 0) - count
            if remaining <= 0:
                aggregate.pop(b, None)
            else:
                aggregate[b] = remaining
