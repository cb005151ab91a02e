"""
Bounded state store.

Owns everything the dashboard reads: the orderbook snapshot, the metrics
snapshot, the incident list, the log ring, the performance history and the
message-rate estimator. Mutated only from the dispatch path; presentation
code reads it and never touches the transport.

Thread-safety: NOT thread-safe. Designed for single-threaded async use.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..timefmt import utc_now
from ..types import (
    Incident, LogEntry, LogLevel, Metrics, OrderbookSnapshot, SequencePolicy,
    ServerStatus,
)
from .history import DEFAULT_CAPACITY, PerformanceHistory, RingBuffer
from .rate import DEFAULT_WINDOW_SEC, RateEstimator

logger = logging.getLogger(__name__)

DEFAULT_INCIDENT_VIEW = 50


class MonitorStore:
    """
    Observable application state fed by one consumer adapter.

    `version` increases on every mutation so readers polling on a timer can
    skip redraws when nothing changed.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        rate_window_sec: float = DEFAULT_WINDOW_SEC,
        sequence_policy: SequencePolicy = SequencePolicy.REPLACE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sequence_policy = SequencePolicy(sequence_policy)

        self.orderbook = OrderbookSnapshot()
        self.metrics = Metrics()
        self._incidents: list[Incident] = []
        self.logs: RingBuffer[LogEntry] = RingBuffer(capacity)
        self.performance = PerformanceHistory(capacity)
        self.rate = RateEstimator(rate_window_sec, clock=clock)

        self.message_count = 0
        self.rejected_count = 0
        self.version = 0

    def _touch(self) -> None:
        self.version += 1

    # Logs / incidents

    def add_log(self, level: LogLevel, message: str) -> LogEntry:
        entry = LogEntry(utc_now(), LogLevel(level), message)
        self.logs.append(entry)
        self._touch()
        return entry

    def add_incident(self, incident: Incident) -> None:
        self._incidents.append(incident)
        self._touch()

    @property
    def incidents(self) -> tuple[Incident, ...]:
        return tuple(self._incidents)

    def recent_incidents(self, limit: int = DEFAULT_INCIDENT_VIEW) -> list[Incident]:
        """Newest first, capped for display. The underlying list is never trimmed."""
        if limit <= 0:
            return []
        return self._incidents[-limit:][::-1]

    # Snapshots

    def update_orderbook(self, **fields: object) -> bool:
        """
        Shallow-merge `fields` onto the current orderbook snapshot.

        Counts as one orderbook arrival for the message rate. Returns False if
        the sequence policy rejected the update.
        """
        self.message_count += 1
        self.rate.record()

        new_seq = fields.get('sequence_id')
        if (
            self.sequence_policy is SequencePolicy.REJECT_REGRESSION
            and isinstance(new_seq, int)
            and new_seq < self.orderbook.sequence_id
        ):
            self.rejected_count += 1
            logger.debug(
                "Rejected orderbook seq %s (current %s)", new_seq, self.orderbook.sequence_id
            )
            return False

        self.orderbook = self.orderbook._replace(**fields)
        self._touch()
        return True

    def update_metrics(self, **fields: object) -> Metrics:
        """Shallow-merge `fields` onto the current metrics snapshot."""
        if 'server_status' in fields:
            fields['server_status'] = ServerStatus.coerce(fields['server_status'])
        self.metrics = self.metrics._replace(**fields)
        self._touch()
        return self.metrics

    def update_performance_history(
        self,
        memory: float,
        queue: float,
        delay: float,
        message_rate: Optional[float] = None,
    ) -> None:
        self.performance.append(memory, queue, delay, message_rate)
        self._touch()

    def message_rate(self, now: Optional[float] = None) -> float:
        """Orderbook updates per second over the trailing window."""
        return self.rate.rate(now)
