"""
Bar Extraction

Vendor-neutral construction of BarRecords. A volumetric bar arrives as a
bid/ask ladder (volume traded at the bid and at the ask per price level);
this module derives buy/sell totals, the point of control and the diagonal
imbalance summary from it. Plain OHLCV(+order-flow) DataFrames can be
converted in bulk with ``bars_from_frame``.

Imbalance rules (diagonal comparison, one level apart):
- bullish at price P: ask(P) >= min_volume and either bid(P - level) == 0,
  or ask(P) - bid(P - level) >= min_volume and ask(P) / bid(P - level) >= ratio
- bearish at price P: bid(P) >= min_volume and either ask(P + level) == 0,
  or bid(P) - ask(P + level) >= min_volume and bid(P) / ask(P + level) >= ratio

Time Complexity: O(L) per bar where L is the number of ladder levels
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional

import pandas as pd
import logging

from .bars import BarRecord, ImbalanceSummary
from orderflow_engine.core.config import ImbalanceConfig

logger = logging.getLogger(__name__)

ORDER_FLOW_COLUMNS = [
    'buy_volume', 'sell_volume', 'cumulative_delta', 'max_delta',
    'min_delta', 'point_of_control',
]


@dataclass(frozen=True)
class LadderLevel:
    """Volume traded at one price level"""
    bid_volume: int = 0
    ask_volume: int = 0

    @property
    def total(self) -> int:
        return self.bid_volume + self.ask_volume


def round_to_tick(price: float, tick_size: float) -> float:
    """Snap a price to the tick grid so ladder keys compare equal"""
    return round(price / tick_size) * tick_size


class LadderBarBuilder:
    """
    Builds BarRecords from bid/ask ladders

    Keeps a running cumulative delta across bars of the same series, as a
    volumetric bar feed does.
    """

    def __init__(self, tick_size: float, ticks_per_level: int = 1,
                 config: Optional[ImbalanceConfig] = None):
        if tick_size <= 0:
            raise ValueError(f"tick_size must be positive, got {tick_size}")
        if ticks_per_level < 1:
            raise ValueError(f"ticks_per_level must be >= 1, got {ticks_per_level}")

        self.tick_size = tick_size
        self.ticks_per_level = ticks_per_level
        self.config = config or ImbalanceConfig()
        self.cumulative_delta = 0

    @property
    def level_size(self) -> float:
        return self.tick_size * self.ticks_per_level

    def reset(self) -> None:
        self.cumulative_delta = 0

    def _volume_at(self, ladder: Mapping[float, LadderLevel], price: float) -> LadderLevel:
        return ladder.get(round_to_tick(price, self.tick_size), LadderLevel())

    def _is_imbalance(self, volume: int, opposite: int) -> bool:
        min_volume = self.config.min_volume
        if volume <= 0 or volume < min_volume:
            return False
        if opposite == 0:
            return True
        return (volume - opposite) >= min_volume and volume / opposite >= self.config.ratio

    def summarize_imbalances(self, ladder: Mapping[float, LadderLevel],
                             high: float, low: float) -> ImbalanceSummary:
        """Scan the ladder between low and high for diagonal imbalances"""
        level_size = self.level_size
        start_level = math.floor(low / level_size)
        end_level = math.ceil(high / level_size)

        bull_count = bear_count = 0
        bull_volume = bear_volume = 0
        bull_price_sum = bear_price_sum = 0.0
        max_bull_price = max_bear_price = 0.0
        max_bull_volume = max_bear_volume = 0

        for level in range(start_level, end_level + 1):
            price = round_to_tick(level * level_size, self.tick_size)
            at_price = self._volume_at(ladder, price)
            bid_below = self._volume_at(ladder, price - level_size).bid_volume
            ask_above = self._volume_at(ladder, price + level_size).ask_volume

            if self._is_imbalance(at_price.ask_volume, bid_below):
                bull_count += 1
                bull_volume += at_price.ask_volume
                bull_price_sum += price
                if at_price.ask_volume > max_bull_volume:
                    max_bull_volume = at_price.ask_volume
                    max_bull_price = price

            if self._is_imbalance(at_price.bid_volume, ask_above):
                bear_count += 1
                bear_volume += at_price.bid_volume
                bear_price_sum += price
                if at_price.bid_volume > max_bear_volume:
                    max_bear_volume = at_price.bid_volume
                    max_bear_price = price

        bar_range = high - low
        bull_position = bear_position = 0.0
        if bar_range > 0:
            if bull_count > 0:
                bull_position = (bull_price_sum / bull_count - low) / bar_range * 2.0 - 1.0
            if bear_count > 0:
                bear_position = (bear_price_sum / bear_count - low) / bar_range * 2.0 - 1.0

        return ImbalanceSummary(
            bullish_count=bull_count,
            bearish_count=bear_count,
            bullish_volume_sum=bull_volume,
            bearish_volume_sum=bear_volume,
            bullish_avg_position=bull_position,
            bearish_avg_position=bear_position,
            max_bullish_price=max_bull_price,
            max_bullish_volume=max_bull_volume,
            max_bearish_price=max_bear_price,
            max_bearish_volume=max_bear_volume,
        )

    def build(self, timestamp: datetime, index: int, open_: float, high: float,
              low: float, close: float, ladder: Mapping[float, LadderLevel],
              max_delta: int = 0, min_delta: int = 0) -> BarRecord:
        """
        Build a BarRecord from one bar's ladder

        Args:
            timestamp: Bar close time
            index: Sequence index in the series
            open_, high, low, close: Bar prices
            ladder: price -> LadderLevel (prices on the tick grid)
            max_delta, min_delta: Intrabar delta extremes, when the feed has them
        """
        ladder = {round_to_tick(price, self.tick_size): level for price, level in ladder.items()}

        buy_volume = sum(level.ask_volume for level in ladder.values())
        sell_volume = sum(level.bid_volume for level in ladder.values())
        self.cumulative_delta += buy_volume - sell_volume

        price_volumes = {price: level.total for price, level in ladder.items() if level.total > 0}

        # POC: highest total volume, higher price on ties
        point_of_control = 0.0
        best_volume = 0
        for price, volume in price_volumes.items():
            if volume > best_volume or (volume == best_volume and price > point_of_control):
                best_volume = volume
                point_of_control = price

        return BarRecord(
            timestamp=timestamp,
            index=index,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=buy_volume + sell_volume,
            buy_volume=buy_volume,
            sell_volume=sell_volume,
            cumulative_delta=self.cumulative_delta,
            max_delta=max_delta,
            min_delta=min_delta,
            point_of_control=point_of_control,
            imbalance=self.summarize_imbalances(ladder, high, low),
            price_volumes=price_volumes,
        )


def bars_from_frame(df: pd.DataFrame) -> List[BarRecord]:
    """
    Convert an OHLCV DataFrame into BarRecords

    Required columns: open, high, low, close, volume. Optional order-flow
    columns (buy_volume, sell_volume, cumulative_delta, max_delta,
    min_delta, point_of_control) default to 0. The timestamp comes from a
    'timestamp' column when present, otherwise from the index.
    """
    required = ['open', 'high', 'low', 'close', 'volume']
    missing = set(required) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    if df.empty:
        logger.warning("bars_from_frame called with an empty DataFrame")
        return []

    if 'timestamp' in df.columns:
        timestamps = pd.DatetimeIndex(pd.to_datetime(df['timestamp']))
    else:
        timestamps = pd.DatetimeIndex(pd.to_datetime(df.index))
    columns: Dict[str, pd.Series] = {
        col: (df[col] if col in df.columns else pd.Series(0, index=df.index))
        for col in ORDER_FLOW_COLUMNS
    }

    bars = []
    for i in range(len(df)):
        row = df.iloc[i]
        bars.append(BarRecord(
            timestamp=timestamps[i].to_pydatetime(),
            index=i,
            open=float(row['open']),
            high=float(row['high']),
            low=float(row['low']),
            close=float(row['close']),
            volume=int(row['volume']),
            buy_volume=int(columns['buy_volume'].iloc[i]),
            sell_volume=int(columns['sell_volume'].iloc[i]),
            cumulative_delta=int(columns['cumulative_delta'].iloc[i]),
            max_delta=int(columns['max_delta'].iloc[i]),
            min_delta=int(columns['min_delta'].iloc[i]),
            point_of_control=float(columns['point_of_control'].iloc[i]),
        ))

    return bars
