"""
Envelope dispatch: one envelope in, store mutations out.

Within one envelope the store is always mutated before the staleness detector
is evaluated. The dispatcher never talks to the transport; it reports a trip
in its result and the consumer adapter decides what to disconnect.
"""

from __future__ import annotations

import logging
from typing import Callable, NamedTuple

import orjson

from ..datafeed.envelope import (
    field_bool, field_float, field_int, field_levels, field_str,
)
from ..timefmt import utc_now_iso
from ..types import Envelope, Incident, LogLevel, MessageType
from .staleness import StalenessDetector
from .store import MonitorStore

logger = logging.getLogger(__name__)

CIRCUIT_BREAKER_INCIDENT = "circuit_breaker"
STALE_DATA_INCIDENT = "stale_data"

# heartbeat key -> (Metrics field, coercer)
_METRIC_FIELDS: dict[str, tuple[str, Callable[[dict, str], object]]] = {
    'memory_usage_mb': ('memory_usage_mb', field_float),
    'queue_size': ('queue_size', field_int),
    'processing_delay_ms': ('processing_delay_ms', field_float),
    'server_status': ('server_status', field_str),
    'active_clients': ('active_clients', field_int),
    'current_scenario': ('current_scenario', field_str),
    'uptime_seconds': ('uptime_seconds', field_float),
    'total_messages_received': ('total_events_received', field_int),
}


class DispatchResult(NamedTuple):
    kind: MessageType
    applied: bool = True      # False when the store rejected the update
    tripped: bool = False     # True on the envelope that tripped the breaker


class Dispatcher:
    """Routes envelopes by type into a MonitorStore."""

    def __init__(self, store: MonitorStore, detector: StalenessDetector) -> None:
        self.store = store
        self.detector = detector
        self._handlers: dict[MessageType, Callable[[Envelope], DispatchResult]] = {
            MessageType.CONNECTION: self._on_connection,
            MessageType.HEARTBEAT: self._on_heartbeat,
            MessageType.ORDERBOOK_UPDATE: self._on_orderbook_update,
            MessageType.INCIDENT_ALERT: self._on_incident_alert,
            MessageType.KEEPALIVE: self._on_keepalive,
            MessageType.UNKNOWN: self._on_unknown,
        }

    def dispatch(self, envelope: Envelope) -> DispatchResult:
        return self._handlers[envelope.kind](envelope)

    def _on_connection(self, envelope: Envelope) -> DispatchResult:
        message = field_str(envelope.data, 'message', default="")
        self.store.add_log(LogLevel.INFO, f"Connected to server: {message}")
        return DispatchResult(MessageType.CONNECTION)

    def _on_heartbeat(self, envelope: Envelope) -> DispatchResult:
        data = envelope.data
        # Merge only what the heartbeat carries; absent keys keep prior values
        fields = {
            field: coerce(data, key)
            for key, (field, coerce) in _METRIC_FIELDS.items()
            if key in data
        }
        metrics = self.store.update_metrics(**fields)

        self.store.update_performance_history(
            metrics.memory_usage_mb,
            metrics.queue_size,
            metrics.processing_delay_ms,
            self.store.message_rate(),
        )
        return DispatchResult(MessageType.HEARTBEAT)

    def _on_orderbook_update(self, envelope: Envelope) -> DispatchResult:
        data = envelope.data
        data_age = field_float(data, 'data_age_ms')
        is_stale = field_bool(data, 'is_stale')
        sequence_id = field_int(data, 'sequence_id')

        applied = self.store.update_orderbook(
            bids=field_levels(data, 'bids', descending=True),
            asks=field_levels(data, 'asks', descending=False),
            mid_price=field_float(data, 'mid_price'),
            spread=field_float(data, 'spread'),
            sequence_id=sequence_id,
            timestamp=field_str(data, 'timestamp', default=utc_now_iso()),
            data_age_ms=data_age,
            is_stale=is_stale,
            processing_delay_ms=field_float(data, 'processing_delay_ms'),
        )
        if not applied:
            self.store.add_log(
                LogLevel.WARNING,
                f"Out-of-order orderbook update dropped "
                f"(seq: {sequence_id} < {self.store.orderbook.sequence_id})",
            )
            return DispatchResult(MessageType.ORDERBOOK_UPDATE, applied=False)

        if self.detector.is_critical(data_age, is_stale):
            self.store.add_log(
                LogLevel.CRITICAL,
                f"Stale data detected: {data_age:.0f}ms old (seq: {sequence_id})",
            )
        elif is_stale:
            self.store.add_log(LogLevel.WARNING, f"Data freshness degraded: {data_age:.0f}ms lag")

        tripped = self.detector.evaluate(data_age, is_stale)
        if tripped:
            self._record_trip(data_age, sequence_id)

        return DispatchResult(MessageType.ORDERBOOK_UPDATE, tripped=tripped)

    def _record_trip(self, data_age: float, sequence_id: int) -> None:
        threshold = self.detector.threshold_ms
        metrics = self.store.metrics
        details = (
            f"Data age {data_age:.0f}ms exceeded {threshold:.0f}ms "
            f"(seq: {sequence_id}); stream disconnected"
        )
        logger.critical("Staleness circuit breaker tripped: %s", details)

        self.store.add_incident(Incident(
            timestamp=utc_now_iso(),
            type=CIRCUIT_BREAKER_INCIDENT,
            details=details,
            scenario=metrics.current_scenario,
            uptime=metrics.uptime_seconds,
        ))
        self.store.add_log(LogLevel.CRITICAL, f"TRADING STOPPED: {details}")

    def _on_incident_alert(self, envelope: Envelope) -> DispatchResult:
        data = envelope.data
        incident_type = field_str(data, 'type', default="Unknown")

        if incident_type == STALE_DATA_INCIDENT:
            data_age = field_float(data, 'data_age_ms')
            details = (
                f"Data age: {data_age:.0f}ms, "
                f"Processing delay: {field_float(data, 'processing_delay_ms'):.0f}ms, "
                f"Queue: {field_int(data, 'queue_size')}"
            )
            self.store.add_log(
                LogLevel.CRITICAL,
                f"STALE DATA ALERT: {data_age:.0f}ms lag on sequence "
                f"{field_int(data, 'sequence_id')}",
            )
        else:
            raw = data.get('details')
            if isinstance(raw, (dict, list)):
                details = orjson.dumps(raw).decode()
            else:
                details = field_str(data, 'details', default="No details provided")
            self.store.add_log(LogLevel.INCIDENT, f"Incident: {incident_type} - {details}")

        uptime = field_float(data, 'uptime') or field_float(data, 'uptime_seconds')
        self.store.add_incident(Incident(
            timestamp=field_str(data, 'timestamp', default=envelope.timestamp),
            type=incident_type,
            details=details,
            scenario=field_str(data, 'scenario'),
            uptime=uptime,
        ))
        return DispatchResult(MessageType.INCIDENT_ALERT)

    def _on_keepalive(self, envelope: Envelope) -> DispatchResult:
        return DispatchResult(MessageType.KEEPALIVE)

    def _on_unknown(self, envelope: Envelope) -> DispatchResult:
        logger.debug("Unknown message type: %s", envelope.type)
        self.store.add_log(LogLevel.INFO, f"Unknown message type: {envelope.type}")
        return DispatchResult(MessageType.UNKNOWN)
