# tests/test_dashboard.py
from __future__ import annotations

import io
from datetime import datetime, timezone

import numpy as np
import pytest
from aiohttp.test_utils import unused_port
from rich.console import Console

from stream_monitor.config import Settings
from stream_monitor.engine.rate import EventsRateSampler
from stream_monitor.session import MonitorSession
from stream_monitor.types import (
    ConnectionState, Incident, LogEntry, LogLevel, Metrics, OrderbookSnapshot, PriceLevel,
    ServerStatus,
)
from stream_monitor.ui.dashboard import (
    ASK_COLOR, BID_COLOR, SPARK_CHARS, WARN_COLOR, DashboardApp, format_qty, format_uptime,
    freshness_style, make_bar, render_events_rate, render_incidents, render_logs,
    render_metrics, render_orderbook, render_status, sparkline,
)


def to_text(renderable) -> str:
    console = Console(file=io.StringIO(), width=120, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


def snapshot(**overrides) -> OrderbookSnapshot:
    fields = dict(
        bids=(PriceLevel(99.99, 1.5), PriceLevel(99.98, 2500.0)),
        asks=(PriceLevel(100.01, 0.25), PriceLevel(100.02, 3.0)),
        mid_price=100.0,
        spread=0.02,
        sequence_id=42,
        timestamp='2024-01-01T00:00:00Z',
        data_age_ms=15.0,
    )
    fields.update(overrides)
    return OrderbookSnapshot(**fields)


def test_format_qty():
    assert format_qty(2500.0) == "2.5K"
    assert format_qty(1.5) == "1.50"
    assert format_qty(0.25) == "0.2500"


def test_format_uptime():
    assert format_uptime(3661.9) == "1h 01m 01s"
    assert format_uptime(0) == "0h 00m 00s"


def test_make_bar_width():
    assert make_bar(5, 10, 8, BID_COLOR).plain == "████    "
    assert make_bar(50, 10, 4, BID_COLOR).plain == "████"
    assert make_bar(1, 0, 3, BID_COLOR).plain == "   "


def test_sparkline_shapes():
    assert sparkline(np.empty(0)) == ""
    assert sparkline(np.array([3.0, 3.0, 3.0])) == SPARK_CHARS[0] * 3
    assert sparkline(np.arange(8, dtype=np.float64)) == SPARK_CHARS

    long = sparkline(np.arange(1000, dtype=np.float64), width=30)
    assert len(long) == 30
    assert long[0] == SPARK_CHARS[0]
    assert long[-1] == SPARK_CHARS[-1]


def test_freshness_style():
    assert freshness_style(snapshot(), 1000.0) == BID_COLOR
    assert freshness_style(snapshot(is_stale=True, data_age_ms=500), 1000.0) == WARN_COLOR
    assert freshness_style(snapshot(is_stale=True, data_age_ms=1500), 1000.0) == ASK_COLOR


def test_render_orderbook_waits_for_first_snapshot():
    assert "Waiting for orderbook..." in to_text(render_orderbook(OrderbookSnapshot()))


def test_render_orderbook_ladder():
    text = to_text(render_orderbook(snapshot(is_stale=True, data_age_ms=700)))

    assert "100.02" in text and "99.98" in text
    assert text.index("100.02") < text.index("100.01") < text.index("99.99")
    assert "seq 42" in text
    assert "2.5K" in text
    assert "700ms (stale)" in text


def test_render_status_banner():
    stopped = render_status(ConnectionState.DISCONNECTED, "burst-mode", 12.34, True, None, True).plain
    failed = render_status(ConnectionState.FAILED, "unknown", 0.0, False, "Connection failed").plain

    assert "TRADING STOPPED" in stopped
    assert "burst-mode" in stopped
    assert "12.3" in stopped
    assert "Publisher: running" in stopped
    assert "FAILED" in failed
    assert "Connection failed" in failed


def test_render_metrics_includes_values():
    metrics = Metrics(memory_usage_mb=256.0, queue_size=12, server_status=ServerStatus.DEGRADED,
                      uptime_seconds=125, total_events_received=12345)
    history = {'memory': np.array([1.0, 2.0, 3.0])}
    text = to_text(render_metrics(metrics, history))

    assert "256.0 MB" in text
    assert "degraded" in text
    assert "0h 02m 05s" in text
    assert "12,345" in text


def test_render_events_rate():
    sampler = EventsRateSampler()
    sampler.sample(100, now=0.0)
    sampler.sample(130, now=1.0)

    text = render_events_rate(sampler, connected=True).plain
    assert text.startswith("Events/s: 30")


def test_render_incidents_and_logs():
    assert "No incidents" in to_text(render_incidents([]))
    assert "No log entries" in to_text(render_logs([]))

    incident = Incident('t', 'circuit_breaker', 'Data age 1200ms exceeded', 'burst-mode', 3.0)
    assert "circuit_breaker" in to_text(render_incidents([incident]))

    entry = LogEntry(datetime(2024, 1, 1, 9, 30, 5, tzinfo=timezone.utc), LogLevel.CRITICAL, "boom")
    assert render_logs([entry]).plain == "09:30:05 UTC CRITICAL boom"


@pytest.mark.asyncio
async def test_dashboard_restart_and_scenario_bindings(fake_factory, frame, orderbook, until):
    settings = Settings.for_profile(
        "development",
        server_url=f"http://127.0.0.1:{unused_port()}",
        base_delay_sec=0.01,
    )
    session = MonitorSession(settings, transport_factory=fake_factory)
    app = DashboardApp(session)

    async with app.run_test() as pilot:
        await until(session.manager.is_connected)

        fake_factory.last.feed(frame('orderbook_update', orderbook(age=2000, stale=True)))
        await until(lambda: session.trading_stopped)

        await pilot.press("r")
        await until(lambda: not session.trading_stopped and session.manager.is_connected())
        assert len(fake_factory.transports) == 2

        # the control API is unreachable; the failure is logged, not raised
        await pilot.press("2")
        await until(lambda: any(e.message.startswith("Switch to Burst Mode failed")
                                for e in session.store.logs), timeout=5.0)

    await session.close()
    assert session.manager.state is ConnectionState.DISCONNECTED
