"""
Staleness circuit breaker.

The publisher stamps every orderbook update with data_age_ms and is_stale.
When a stale sample exceeds the critical threshold the breaker trips exactly
once and stays tripped (a latch) until reset() is called by whoever restarts
the stream. Further stale samples while tripped do not re-fire.
"""

from __future__ import annotations

import math
from typing import Optional

DEFAULT_THRESHOLD_MS = 1000.0


class StalenessDetector:
    """Edge-triggered, manually re-armed staleness latch."""

    __slots__ = ('threshold_ms', '_tripped', 'trip_count', 'last_trip_age_ms')

    def __init__(self, threshold_ms: float = DEFAULT_THRESHOLD_MS) -> None:
        if not math.isfinite(threshold_ms) or threshold_ms <= 0:
            raise ValueError("threshold_ms must be a positive finite number")
        self.threshold_ms = threshold_ms
        self._tripped = False
        self.trip_count = 0
        self.last_trip_age_ms: Optional[float] = None

    @property
    def tripped(self) -> bool:
        return self._tripped

    def is_critical(self, data_age_ms: float, is_stale: bool) -> bool:
        """Level check: does this sample violate the freshness bound?"""
        return is_stale and data_age_ms > self.threshold_ms

    def evaluate(self, data_age_ms: float, is_stale: bool) -> bool:
        """
        Feed one sample. Returns True only on the sample that trips the breaker.
        """
        if self._tripped or not self.is_critical(data_age_ms, is_stale):
            return False

        self._tripped = True
        self.trip_count += 1
        self.last_trip_age_ms = data_age_ms
        return True

    def reset(self) -> None:
        """Re-arm after an explicit restart."""
        self._tripped = False
