"""
Data types for Stream Monitor.

Notes:
- NamedTuple for immutable records; partial updates go through _replace()
- These are the store-facing structures; the wire format lives in datafeed/envelope.py
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional


class ConnectionState(Enum):
    """Lifecycle of the shared push connection. Set only by the ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class MessageType(str, Enum):
    """Recognized envelope types."""
    CONNECTION = "connection"
    HEARTBEAT = "heartbeat"
    ORDERBOOK_UPDATE = "orderbook_update"
    INCIDENT_ALERT = "incident_alert"
    KEEPALIVE = "keepalive"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: str) -> MessageType:
        try:
            member = cls(value)
        except ValueError:
            return cls.UNKNOWN
        return member


class ServerStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: object) -> ServerStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class LogLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    INCIDENT = "INCIDENT"


class ErrorKind(Enum):
    """Distinct failure classes surfaced to error subscribers."""
    CONNECT = "connect"                        # transport construction / open failed
    TRANSPORT = "transport"                    # mid-stream transport error
    PARSE = "parse"                            # malformed envelope, dropped
    RETRIES_EXHAUSTED = "retries_exhausted"    # terminal until explicit connect()


class SequencePolicy(str, Enum):
    """How the store treats an orderbook snapshot whose sequence id goes backwards."""
    REPLACE = "replace"
    REJECT_REGRESSION = "reject_regression"


class StreamError(NamedTuple):
    """Error notification delivered to subscribers."""
    kind: ErrorKind
    message: str


class Envelope(NamedTuple):
    """One inbound streaming unit."""
    type: str
    data: dict
    timestamp: str

    @property
    def kind(self) -> MessageType:
        return MessageType.from_wire(self.type)


class PriceLevel(NamedTuple):
    """Single price level of the orderbook ladder."""
    price: float
    quantity: float


class OrderbookSnapshot(NamedTuple):
    """
    Full-replacement orderbook snapshot.

    bids are ordered by price descending, asks by price ascending.
    """
    bids: tuple[PriceLevel, ...] = ()
    asks: tuple[PriceLevel, ...] = ()
    mid_price: float = 0.0
    spread: float = 0.0
    sequence_id: int = 0
    timestamp: Optional[str] = None     # server timestamp, None before first update
    data_age_ms: float = 0.0
    is_stale: bool = False
    processing_delay_ms: float = 0.0


class Metrics(NamedTuple):
    """Publisher health fields carried on heartbeats."""
    memory_usage_mb: float = 0.0
    queue_size: int = 0
    processing_delay_ms: float = 0.0
    server_status: ServerStatus = ServerStatus.UNKNOWN
    active_clients: int = 0
    current_scenario: str = "unknown"
    uptime_seconds: float = 0.0
    total_events_received: int = 0


class Incident(NamedTuple):
    timestamp: str
    type: str
    details: str
    scenario: str
    uptime: float


class LogEntry(NamedTuple):
    timestamp: datetime   # aware, UTC
    level: LogLevel
    message: str


class Scenario(NamedTuple):
    """Publisher load profile selectable through the control API."""
    value: str
    label: str
    description: str


SCENARIOS: tuple[Scenario, ...] = (
    Scenario("stable-mode", "Stable Mode", "Normal Operation"),
    Scenario("burst-mode", "Burst Mode", "High-Frequency Spike"),
    Scenario("gradual-spike", "Gradual Spike", "Progressive Degradation"),
    Scenario("extreme-spike", "Extreme Spike", "Maximum Stress"),
)
