"""
Runtime configuration.

Settings are read once at startup (environment + CLI overrides) and never
mutated by the core afterwards.

Environment:
    STREAM_MONITOR_SERVER_URL          Base publisher origin (http/https)
    STREAM_MONITOR_ENV                 Deployment profile: development | production
    STREAM_MONITOR_TRANSPORT           ws | sse
    STREAM_MONITOR_DEBUG               Debug logging (1/0, true/false)
    STREAM_MONITOR_AUTO_RECONNECT      Automatic reconnection (1/0, true/false)
    STREAM_MONITOR_STALE_THRESHOLD_MS  Circuit-breaker data age threshold
"""

from __future__ import annotations

import math
import os
import re
from typing import Mapping, NamedTuple, Optional

from .errors import ConfigError
from .types import SequencePolicy

DEFAULT_SERVER_URL = "http://127.0.0.1:8000"

ENV_PREFIX = "STREAM_MONITOR_"

# Publisher endpoints
ENDPOINTS = {
    "health": "/health",
    "status": "/status",
    "metrics": "/metrics/summary",
    "start": "/start",
    "stop": "/stop",
    "profiles": "/config/profiles",
    "profile_switch": "/config/profile",
    "publisher_status": "/status/publisher",
    "websocket": "/ws",
    "sse": "/events",
}

TRANSPORTS = ("ws", "sse")

# Per-deployment defaults; explicit env vars / CLI flags win
PROFILES: dict[str, dict[str, object]] = {
    "development": {
        "debug_logging": True,
        "auto_reconnect": True,
        "stale_threshold_ms": 1000.0,
    },
    "production": {
        "debug_logging": False,
        "auto_reconnect": True,
        "stale_threshold_ms": 300.0,
    },
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name}: expected a boolean, got {value!r}")


def parse_float(value: str, name: str) -> float:
    try:
        result = float(value)
    except ValueError:
        raise ConfigError(f"{name}: expected a number, got {value!r}") from None
    if not math.isfinite(result) or result <= 0:
        raise ConfigError(f"{name}: must be a positive finite number, got {value!r}")
    return result


class Settings(NamedTuple):
    """Client configuration."""
    server_url: str = DEFAULT_SERVER_URL
    environment: str = "development"
    transport: str = "ws"
    debug_logging: bool = True
    auto_reconnect: bool = True
    stale_threshold_ms: float = 1000.0
    base_delay_sec: float = 2.0
    max_reconnect_attempts: int = 5
    rate_window_sec: float = 5.0
    history_capacity: int = 1000
    status_poll_interval_sec: float = 5.0
    sequence_policy: SequencePolicy = SequencePolicy.REPLACE

    @classmethod
    def for_profile(cls, environment: str, **overrides: object) -> Settings:
        """Build settings from a deployment profile plus explicit overrides."""
        if environment not in PROFILES:
            raise ConfigError(
                f"Unknown environment {environment!r}; expected one of {sorted(PROFILES)}"
            )
        values: dict[str, object] = dict(PROFILES[environment])
        values.update(overrides)
        return cls(environment=environment, **values).validated()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        """Read settings from STREAM_MONITOR_* environment variables."""
        env = os.environ if environ is None else environ

        def get(key: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + key)
            return value if value not in (None, "") else None

        overrides: dict[str, object] = {}
        url = get("SERVER_URL")
        if url is not None:
            overrides["server_url"] = url
        transport = get("TRANSPORT")
        if transport is not None:
            overrides["transport"] = transport.lower()
        debug = get("DEBUG")
        if debug is not None:
            overrides["debug_logging"] = parse_bool(debug, ENV_PREFIX + "DEBUG")
        auto = get("AUTO_RECONNECT")
        if auto is not None:
            overrides["auto_reconnect"] = parse_bool(auto, ENV_PREFIX + "AUTO_RECONNECT")
        threshold = get("STALE_THRESHOLD_MS")
        if threshold is not None:
            overrides["stale_threshold_ms"] = parse_float(
                threshold, ENV_PREFIX + "STALE_THRESHOLD_MS"
            )

        return cls.for_profile(get("ENV") or "development", **overrides)

    def validated(self) -> Settings:
        """Normalize fields and reject invalid combinations."""
        if not re.match(r"^https?://", self.server_url):
            raise ConfigError(f"server_url must be http(s)://..., got {self.server_url!r}")
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"transport must be one of {TRANSPORTS}, got {self.transport!r}")
        if not math.isfinite(self.stale_threshold_ms) or self.stale_threshold_ms <= 0:
            raise ConfigError("stale_threshold_ms must be a positive finite number")
        if not math.isfinite(self.base_delay_sec) or self.base_delay_sec <= 0:
            raise ConfigError("base_delay_sec must be a positive finite number")
        if self.max_reconnect_attempts < 0:
            raise ConfigError("max_reconnect_attempts must be >= 0")
        if self.history_capacity < 1:
            raise ConfigError("history_capacity must be >= 1")
        try:
            policy = SequencePolicy(self.sequence_policy)
        except ValueError:
            raise ConfigError(f"Unknown sequence policy {self.sequence_policy!r}") from None
        return self._replace(server_url=self.server_url.rstrip("/"), sequence_policy=policy)

    @property
    def ws_url(self) -> str:
        # http -> ws, https -> wss
        origin = re.sub(r"^http", "ws", self.server_url)
        return f"{origin}{ENDPOINTS['websocket']}"

    @property
    def sse_url(self) -> str:
        return f"{self.server_url}{ENDPOINTS['sse']}"

    @property
    def stream_url(self) -> str:
        return self.ws_url if self.transport == "ws" else self.sse_url

    def api_url(self, endpoint: str) -> str:
        return f"{self.server_url}{endpoint}"
