"""
Volume Profile Features

Market-microstructure analysis of where volume traded:

- calculate_volume_profile: POC, value area (VAH/VAL) and high-volume
  nodes of a price -> volume histogram
- aggregate_price_volumes: merges the per-bar ladders of a window of bars
  into one histogram on a fixed level grid

The value area is grown greedily outward from the POC over the sorted
price levels, so the result depends only on the histogram contents and
never on mapping iteration order.

Time Complexity: O(L log L) per profile where L is the number of levels
Space Complexity: O(L)
"""

from typing import Dict, Iterable, Mapping
import logging

from .results import HighVolumeNode, VolumeProfileResult
from orderflow_engine.data.bars import BarRecord
from orderflow_engine.data.extraction import round_to_tick

logger = logging.getLogger(__name__)

HIGH_VOLUME_NODE_COUNT = 5


def calculate_volume_profile(price_volumes: Mapping[float, int],
                             value_area_percent: float = 0.70) -> VolumeProfileResult:
    """
    Calculate the volume profile of a price histogram

    Args:
        price_volumes: price -> traded volume (one entry per level)
        value_area_percent: Fraction of total volume inside the value area

    Returns:
        VolumeProfileResult, invalid for an empty histogram or zero volume
    """
    if not price_volumes:
        return VolumeProfileResult.invalid()

    # POC: maximum volume, higher price wins ties
    poc_price = 0.0
    max_volume = 0
    total_volume = 0
    first = True
    for price, volume in price_volumes.items():
        total_volume += volume
        if first or volume > max_volume or (volume == max_volume and price > poc_price):
            poc_price = price
            max_volume = volume
            first = False

    if total_volume == 0:
        return VolumeProfileResult.invalid()

    sorted_prices = sorted(price_volumes)
    poc_index = sorted_prices.index(poc_price)
    last_index = len(sorted_prices) - 1

    target_volume = int(total_volume * value_area_percent)
    va_volume = max_volume
    low_index = poc_index
    high_index = poc_index

    while va_volume < target_volume and (low_index > 0 or high_index < last_index):
        if low_index == 0:
            high_index += 1
            va_volume += price_volumes[sorted_prices[high_index]]
        elif high_index == last_index:
            low_index -= 1
            va_volume += price_volumes[sorted_prices[low_index]]
        else:
            volume_below = price_volumes[sorted_prices[low_index - 1]]
            volume_above = price_volumes[sorted_prices[high_index + 1]]
            if volume_below >= volume_above:
                low_index -= 1
                va_volume += volume_below
            else:
                high_index += 1
                va_volume += volume_above

    # sorted() is stable, so equal volumes keep their encounter order
    ranked = sorted(price_volumes.items(), key=lambda item: item[1], reverse=True)
    high_volume_nodes = tuple(
        HighVolumeNode(price=price, volume=volume)
        for price, volume in ranked[:HIGH_VOLUME_NODE_COUNT]
    )

    return VolumeProfileResult.create(
        poc=poc_price,
        vah=sorted_prices[high_index],
        val=sorted_prices[low_index],
        price_volumes=price_volumes,
        max_volume=max_volume,
        total_volume=total_volume,
        high_volume_nodes=high_volume_nodes,
    )


def aggregate_price_volumes(bars: Iterable[BarRecord], level_size: float,
                            tick_size: float = None) -> Dict[float, int]:
    """
    Merge the price ladders of several bars onto one level grid

    Bars without a ladder contribute their whole volume at their point of
    control (or close when no POC is recorded).

    Args:
        bars: Bars to aggregate
        level_size: Price width of one profile level
        tick_size: Tick grid used to clean float keys (defaults to level_size)
    """
    if level_size <= 0:
        raise ValueError(f"level_size must be positive, got {level_size}")
    tick_size = tick_size or level_size

    profile: Dict[float, int] = {}
    for bar in bars:
        if bar.price_volumes:
            items = bar.price_volumes.items()
        elif bar.volume > 0:
            items = [(bar.point_of_control or bar.close, bar.volume)]
        else:
            continue

        for price, volume in items:
            level_price = round_to_tick(round(price / level_size) * level_size, tick_size)
            profile[level_price] = profile.get(level_price, 0) + volume

    return profile
