"""
Fixed-capacity ring buffers for logs and performance history.

Eviction rule: append new, drop from the head once length exceeds capacity.
deque(maxlen=...) gives O(1) append/evict without reallocating.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Generic, Iterator, Optional, TypeVar

import numpy as np

from ..timefmt import utc_now

DEFAULT_CAPACITY = 1000

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Append-only sequence that silently discards its oldest entries on overflow."""

    __slots__ = ('_items',)

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen  # type: ignore[return-value]

    def append(self, item: T) -> None:
        self._items.append(item)

    def latest(self, count: int) -> list[T]:
        """Return up to `count` newest items, oldest first."""
        if count <= 0:
            return []
        n = len(self._items)
        start = max(0, n - count)
        return [self._items[i] for i in range(start, n)]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]


class PerformanceHistory:
    """
    Parallel time series sampled on each heartbeat.

    All series are appended in lock-step, so index i refers to the same sample
    instant across timestamps, memory, queue, processing_delay and message_rate.
    """

    __slots__ = ('timestamps', 'memory', 'queue', 'processing_delay', 'message_rate')

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.timestamps: RingBuffer[datetime] = RingBuffer(capacity)
        self.memory: RingBuffer[float] = RingBuffer(capacity)
        self.queue: RingBuffer[float] = RingBuffer(capacity)
        self.processing_delay: RingBuffer[float] = RingBuffer(capacity)
        self.message_rate: RingBuffer[float] = RingBuffer(capacity)

    @property
    def capacity(self) -> int:
        return self.timestamps.capacity

    def append(
        self,
        memory: float,
        queue: float,
        delay: float,
        message_rate: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self.timestamps.append(timestamp or utc_now())
        self.memory.append(memory)
        self.queue.append(queue)
        self.processing_delay.append(delay)
        self.message_rate.append(message_rate or 0.0)

    def as_arrays(self) -> dict[str, np.ndarray]:
        """Numeric series as float64 arrays (for charts / sparklines)."""
        return {
            'memory': np.fromiter(self.memory, dtype=np.float64, count=len(self.memory)),
            'queue': np.fromiter(self.queue, dtype=np.float64, count=len(self.queue)),
            'processing_delay': np.fromiter(
                self.processing_delay, dtype=np.float64, count=len(self.processing_delay)
            ),
            'message_rate': np.fromiter(
                self.message_rate, dtype=np.float64, count=len(self.message_rate)
            ),
        }

    def clear(self) -> None:
        for series in (self.timestamps, self.memory, self.queue,
                       self.processing_delay, self.message_rate):
            series.clear()

    def __len__(self) -> int:
        return len(self.timestamps)
