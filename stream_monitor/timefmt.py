"""UTC timestamp helpers used for log entries and display."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc_time(value: datetime) -> str:
    """14:03:59 UTC"""
    return _as_utc(value).strftime("%H:%M:%S") + " UTC"


def format_utc_datetime(value: datetime) -> str:
    """10/19/2026 14:03:59 UTC"""
    return _as_utc(value).strftime("%m/%d/%Y ") + format_utc_time(value)


def format_utc_chart_time(value: datetime) -> str:
    return _as_utc(value).strftime("%H:%M:%S")


def parse_utc_string(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp as sent by the publisher.

    Accepts a trailing 'Z'; naive timestamps are taken as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text))
