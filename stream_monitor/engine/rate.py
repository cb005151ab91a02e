"""
Message-rate estimation.

RateEstimator is pull-based: arrivals are recorded as they happen and the rate
is computed on demand from a trailing window, so a display refresh tick can
call it without the estimator running its own timer.

EventsRateSampler converts the publisher's cumulative event counter into a
per-tick events/second history for the events-rate panel.
"""

from __future__ import annotations

import time
from collections import deque
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from ..timefmt import utc_now

DEFAULT_WINDOW_SEC = 5.0
DEFAULT_MAX_POINTS = 60   # one minute at 1 Hz sampling


class RateEstimator:
    """
    Sliding-window arrival counter.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('window_sec', '_clock', '_arrivals')

    def __init__(
        self,
        window_sec: float = DEFAULT_WINDOW_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_sec <= 0:
            raise ValueError("window_sec must be positive")
        self.window_sec = window_sec
        self._clock = clock
        self._arrivals: deque[float] = deque()

    def record(self, ts: Optional[float] = None) -> None:
        """Record one arrival. Timestamps must be non-decreasing."""
        now = self._clock() if ts is None else ts
        self._arrivals.append(now)
        self._evict(now)

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_sec
        while self._arrivals and self._arrivals[0] <= cutoff:
            self._arrivals.popleft()

    def count(self, now: Optional[float] = None) -> int:
        self._evict(self._clock() if now is None else now)
        return len(self._arrivals)

    def rate(self, now: Optional[float] = None) -> float:
        """Events per second over the trailing window."""
        return self.count(now) / self.window_sec

    def clear(self) -> None:
        self._arrivals.clear()


class RatePoint(NamedTuple):
    timestamp: datetime
    rate: int          # rounded events/sec
    cumulative: int


class EventsRateSampler:
    """
    Derives events/sec from a monotonically increasing total.

    sample() is called on a fixed tick (1 Hz in the dashboard). Ticks before the
    first non-zero total, and ticks while disconnected, are skipped so a gap
    does not show up as a rate spike.
    """

    __slots__ = ('history', '_clock', '_last_total', '_last_time')

    def __init__(
        self,
        max_points: int = DEFAULT_MAX_POINTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.history: deque[RatePoint] = deque(maxlen=max_points)
        self._clock = clock
        self._last_total = 0
        self._last_time = 0.0

    def sample(self, total: int, connected: bool = True,
               now: Optional[float] = None) -> Optional[RatePoint]:
        now = self._clock() if now is None else now

        if self._last_total == 0:
            if total > 0:
                self._last_total = total
                self._last_time = now
            return None

        if not connected:
            return None

        elapsed = now - self._last_time
        rate = (total - self._last_total) / elapsed if elapsed > 0 else 0.0
        point = RatePoint(utc_now(), round(rate), total)
        self.history.append(point)

        self._last_total = total
        self._last_time = now
        return point

    @property
    def current_rate(self) -> int:
        return self.history[-1].rate if self.history else 0

    def reset(self) -> None:
        self.history.clear()
        self._last_total = 0
        self._last_time = 0.0
