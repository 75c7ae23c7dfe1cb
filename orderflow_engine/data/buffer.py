"""
Bounded Ring Buffer

Fixed-capacity FIFO store backing every rolling window in the engine.
Storage is a preallocated slot list addressed through head/count indices,
so appends are O(1), memory stays bounded and eviction order is always
oldest-first.
"""

from typing import Generic, Iterator, List, Optional, TypeVar

import numpy as np

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-size circular buffer with O(1) appends

    Index 0 is the oldest item and ``len(buffer) - 1`` the newest. When
    full, appending overwrites the oldest item.
    """

    __slots__ = ("_slots", "_head", "_count")

    def __init__(self, capacity: int):
        if isinstance(capacity, bool) or not isinstance(capacity, (int, np.integer)):
            raise ValueError(f"Capacity must be a positive integer, got {capacity!r}")
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")

        self._slots: List[Optional[T]] = [None] * int(capacity)
        self._head = 0
        self._count = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_full(self) -> bool:
        return self._count == len(self._slots)

    def append(self, item: T) -> None:
        """Append an item, evicting the oldest one when full"""
        capacity = len(self._slots)

        if self._count < capacity:
            self._slots[(self._head + self._count) % capacity] = item
            self._count += 1
        else:
            self._slots[self._head] = item
            self._head = (self._head + 1) % capacity

    add = append

    def get(self, index: int) -> T:
        """Item at logical index (0 = oldest)"""
        if index < 0 or index >= self._count:
            raise IndexError(f"Ring buffer index {index} out of range [0, {self._count})")
        return self._slots[(self._head + index) % len(self._slots)]

    def __getitem__(self, index: int) -> T:
        return self.get(index)

    @property
    def oldest(self) -> T:
        return self.get(0)

    @property
    def newest(self) -> T:
        return self.get(self._count - 1)

    def clear(self) -> None:
        """Drop all items; capacity is unchanged"""
        for i in range(len(self._slots)):
            self._slots[i] = None
        self._head = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __bool__(self) -> bool:
        return self._count > 0

    def __iter__(self) -> Iterator[T]:
        for i in range(self._count):
            yield self.get(i)

    def to_list(self) -> List[T]:
        """Snapshot of the items, oldest first"""
        return list(self)

    def to_array(self, attr: Optional[str] = None) -> np.ndarray:
        """
        Float array of the items (or of one attribute of each item)

        Args:
            attr: Optional attribute name to extract from every item
        """
        if attr is None:
            return np.fromiter(self, dtype=np.float64, count=self._count)
        return np.fromiter((getattr(item, attr) for item in self), dtype=np.float64, count=self._count)

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self.capacity}, count={self._count})"
