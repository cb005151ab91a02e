"""
Envelope parsing and typed field coercion.

Every inbound frame is a JSON object {type, data, timestamp}. Field helpers
never return None: absent or mistyped values fall back to 0 / False / "unknown"
so nothing untyped reaches the store.

HOT PATH: parse_envelope() runs once per frame.
"""

from __future__ import annotations

import math
from typing import Any

import orjson

from ..errors import EnvelopeError
from ..timefmt import utc_now_iso
from ..types import Envelope, PriceLevel


def parse_envelope(raw: bytes | str) -> Envelope:
    """
    Parse one wire frame into an Envelope.

    Raises EnvelopeError for invalid JSON, a non-object payload, a missing or
    non-string type, or a non-object data field.
    """
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise EnvelopeError(f"invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise EnvelopeError(f"expected a JSON object, got {type(payload).__name__}")

    msg_type = payload.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise EnvelopeError("missing or non-string 'type'")

    data = payload.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise EnvelopeError(f"'data' must be an object, got {type(data).__name__}")

    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        timestamp = utc_now_iso()

    return Envelope(msg_type, data, timestamp)


def _number(value: Any) -> float | None:
    # bool is an int subclass; never treat it as a number
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            result = float(value)
        except ValueError:
            return None
        return result if math.isfinite(result) else None
    return None


def field_float(data: dict, key: str, default: float = 0.0) -> float:
    value = _number(data.get(key))
    return default if value is None else value


def field_int(data: dict, key: str, default: int = 0) -> int:
    value = _number(data.get(key))
    return default if value is None else int(value)


def field_bool(data: dict, key: str, default: bool = False) -> bool:
    value = data.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    if isinstance(value, (int, float)):
        return value != 0
    return default


def field_str(data: dict, key: str, default: str = "unknown") -> str:
    value = data.get(key)
    if value is None or value == "":
        return default
    return str(value)


def field_levels(data: dict, key: str, descending: bool) -> tuple[PriceLevel, ...]:
    """
    Parse a [[price, qty], ...] ladder (strings or numbers).

    Malformed rows are skipped. Result is sorted by price, descending for bids
    and ascending for asks.
    """
    rows = data.get(key)
    if not isinstance(rows, (list, tuple)):
        return ()

    levels: list[PriceLevel] = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        price, qty = _number(row[0]), _number(row[1])
        if price is None or qty is None:
            continue
        levels.append(PriceLevel(price, qty))

    levels.sort(key=lambda level: level.price, reverse=descending)
    return tuple(levels)
