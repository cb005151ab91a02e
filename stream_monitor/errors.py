"""Exception hierarchy for Stream Monitor."""

from __future__ import annotations

from typing import Optional


class StreamMonitorError(Exception):
    """Base class for all Stream Monitor errors."""


class ConfigError(StreamMonitorError):
    """Invalid configuration value."""


class EnvelopeError(StreamMonitorError):
    """Inbound payload does not parse to a valid envelope."""


class TransportError(StreamMonitorError):
    """The push transport failed to open or broke mid-stream."""


class ControlAPIError(StreamMonitorError):
    """A control endpoint call failed."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status
