"""
Live dashboard using Textual.

Displays:
- Top: connection state, scenario, message rate, TRADING STOPPED banner
- Left: orderbook ladder (asks over bids) with freshness indicator
- Right: metrics with performance sparklines, events rate, incidents
- Bottom: log tail

Performance notes:
- Panels poll the store at ~10 FPS and skip redraws when store.version is unchanged
- Rendering helpers are pure functions over store values, so they can be tested
  without running the app
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import numpy as np
from rich.console import Group, RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Static

from ..errors import ControlAPIError
from ..engine.rate import EventsRateSampler
from ..timefmt import format_utc_time
from ..types import SCENARIOS, ConnectionState, LogLevel

if TYPE_CHECKING:
    from ..session import MonitorSession
    from ..types import Incident, LogEntry, Metrics, OrderbookSnapshot, PriceLevel

logger = logging.getLogger(__name__)

# Color scheme (dark theme)
BID_COLOR = "#22c55e"      # Green
ASK_COLOR = "#ef4444"      # Red
WARN_COLOR = "#eab308"     # Yellow
INFO_COLOR = "#60a5fa"     # Blue
PRICE_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"
BAR_BG = "#1e293b"

STATE_COLORS = {
    ConnectionState.CONNECTED: BID_COLOR,
    ConnectionState.CONNECTING: WARN_COLOR,
    ConnectionState.DISCONNECTED: HEADER_COLOR,
    ConnectionState.FAILED: ASK_COLOR,
}

LEVEL_COLORS = {
    LogLevel.INFO: INFO_COLOR,
    LogLevel.WARNING: WARN_COLOR,
    LogLevel.ERROR: ASK_COLOR,
    LogLevel.CRITICAL: "bold " + ASK_COLOR,
    LogLevel.INCIDENT: "#f97316",
}

SPARK_CHARS = "▁▂▃▄▅▆▇█"

REFRESH_INTERVAL_SEC = 0.1
RATE_SAMPLE_INTERVAL_SEC = 1.0


def format_qty(qty: float) -> str:
    """Format quantity for display."""
    if qty >= 1000:
        return f"{qty/1000:.1f}K"
    elif qty >= 1:
        return f"{qty:.2f}"
    else:
        return f"{qty:.4f}"


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours}h {minutes:02d}m {secs:02d}s"


def make_bar(value: float, max_value: float, width: int, color: str) -> Text:
    """Create a horizontal bar using block characters."""
    if max_value <= 0:
        return Text(" " * width)

    fill_ratio = min(1.0, value / max_value)
    fill_width = int(fill_ratio * width)

    bar = "█" * fill_width + " " * (width - fill_width)
    return Text(bar, style=Style(color=color, bgcolor=BAR_BG))


def sparkline(values: np.ndarray, width: int = 30) -> str:
    """Render a series as block characters, averaging into `width` buckets if longer."""
    if values.size == 0 or width <= 0:
        return ""

    if values.size > width:
        edges = np.linspace(0, values.size, width + 1).astype(int)
        values = np.array([values[a:b].mean() for a, b in zip(edges[:-1], edges[1:])])

    lo, hi = float(values.min()), float(values.max())
    if hi - lo < 1e-12:
        return SPARK_CHARS[0] * values.size

    scaled = (values - lo) / (hi - lo) * (len(SPARK_CHARS) - 1)
    return "".join(SPARK_CHARS[int(round(v))] for v in scaled)


def freshness_style(snapshot: OrderbookSnapshot, threshold_ms: float) -> str:
    if snapshot.is_stale and snapshot.data_age_ms > threshold_ms:
        return ASK_COLOR
    if snapshot.is_stale:
        return WARN_COLOR
    return BID_COLOR


def render_status(
    state: ConnectionState,
    scenario: str,
    message_rate: float,
    trading_stopped: bool,
    error: Optional[str] = None,
    publisher_running: Optional[bool] = None,
) -> Text:
    parts = [
        Text(f" {state.value.upper()} ", style=f"bold black on {STATE_COLORS[state]}"),
        Text("  Scenario: ", style="dim"),
        Text(scenario, style="cyan"),
        Text("  │  Msgs/s: ", style="dim"),
        Text(f"{message_rate:.1f}", style="cyan"),
    ]
    if publisher_running is not None:
        parts.append(Text("  │  Publisher: ", style="dim"))
        parts.append(Text(
            "running" if publisher_running else "stopped",
            style=BID_COLOR if publisher_running else HEADER_COLOR,
        ))
    if trading_stopped:
        parts.append(Text("  ■ TRADING STOPPED - press r to restart ", style=f"bold white on {ASK_COLOR}"))
    elif error:
        parts.append(Text(f"  {error}", style=ASK_COLOR))

    result = Text()
    for p in parts:
        result.append(p)
    return result


def render_orderbook(
    snapshot: OrderbookSnapshot,
    depth: int = 12,
    threshold_ms: float = 1000.0,
) -> RenderableType:
    """Asks (best at the bottom) above bids (best at the top)."""
    if snapshot.timestamp is None:
        return Text("Waiting for orderbook...", style="dim")

    asks: Sequence[PriceLevel] = snapshot.asks[:depth]
    bids: Sequence[PriceLevel] = snapshot.bids[:depth]
    max_qty = max((lvl.quantity for lvl in (*asks, *bids)), default=0.0)

    table = Table(
        show_header=True,
        header_style=HEADER_COLOR,
        box=None,
        padding=(0, 1),
        collapse_padding=True,
    )
    table.add_column("Price", justify="right", width=12)
    table.add_column("Qty", justify="right", width=10)
    table.add_column("Depth", justify="left", width=16, no_wrap=True)

    for level in reversed(asks):
        table.add_row(
            Text(f"{level.price:.2f}", style=ASK_COLOR),
            Text(format_qty(level.quantity), style=PRICE_COLOR),
            make_bar(level.quantity, max_qty, 16, ASK_COLOR),
        )

    table.add_row(
        Text(f"{snapshot.mid_price:.2f}", style="bold " + PRICE_COLOR),
        Text(f"±{snapshot.spread:.2f}", style="dim"),
        Text(f"seq {snapshot.sequence_id}", style="dim"),
    )

    for level in bids:
        table.add_row(
            Text(f"{level.price:.2f}", style=BID_COLOR),
            Text(format_qty(level.quantity), style=PRICE_COLOR),
            make_bar(level.quantity, max_qty, 16, BID_COLOR),
        )

    freshness = Text()
    freshness.append("Data age: ", style="dim")
    freshness.append(
        f"{snapshot.data_age_ms:.0f}ms{' (stale)' if snapshot.is_stale else ''}",
        style=freshness_style(snapshot, threshold_ms),
    )
    freshness.append(f"  Processing: {snapshot.processing_delay_ms:.1f}ms", style="dim")

    return Group(table, freshness)


def render_metrics(metrics: Metrics, history: dict[str, np.ndarray]) -> RenderableType:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Metric", style="dim", width=16)
    table.add_column("Value", justify="right", width=12)
    table.add_column("Trend", no_wrap=True)

    status_color = {
        "healthy": BID_COLOR,
        "degraded": WARN_COLOR,
    }.get(metrics.server_status.value, HEADER_COLOR)

    table.add_row("Server", Text(metrics.server_status.value, style=status_color), "")
    table.add_row("Memory", f"{metrics.memory_usage_mb:.1f} MB",
                  Text(sparkline(history.get('memory', np.empty(0))), style=INFO_COLOR))
    table.add_row("Queue", str(metrics.queue_size),
                  Text(sparkline(history.get('queue', np.empty(0))), style=WARN_COLOR))
    table.add_row("Delay", f"{metrics.processing_delay_ms:.1f} ms",
                  Text(sparkline(history.get('processing_delay', np.empty(0))), style=ASK_COLOR))
    table.add_row("Msg rate", "",
                  Text(sparkline(history.get('message_rate', np.empty(0))), style=BID_COLOR))
    table.add_row("Clients", str(metrics.active_clients), "")
    table.add_row("Uptime", format_uptime(metrics.uptime_seconds), "")
    table.add_row("Events", f"{metrics.total_events_received:,}", "")
    return table


def render_events_rate(sampler: EventsRateSampler, connected: bool) -> Text:
    rates = np.array([p.rate for p in sampler.history], dtype=np.float64)
    current = sampler.current_rate
    color = ASK_COLOR if not connected else (WARN_COLOR if current >= 10 else INFO_COLOR)

    text = Text()
    text.append("Events/s: ", style="dim")
    text.append(f"{current}", style="bold " + color)
    text.append("  ")
    text.append(sparkline(rates, width=40), style=color)
    return text


def render_incidents(incidents: Iterable[Incident]) -> RenderableType:
    rows = list(incidents)
    if not rows:
        return Text("No incidents", style="dim")

    table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
    table.add_column("Type", width=16, no_wrap=True)
    table.add_column("Scenario", width=14, no_wrap=True)
    table.add_column("Details")
    for incident in rows:
        table.add_row(
            Text(incident.type, style=ASK_COLOR),
            Text(incident.scenario, style="dim"),
            incident.details,
        )
    return table


def render_logs(entries: Iterable[LogEntry]) -> RenderableType:
    rows = list(entries)
    if not rows:
        return Text("No log entries", style="dim")

    text = Text()
    for i, entry in enumerate(rows):
        if i:
            text.append("\n")
        text.append(format_utc_time(entry.timestamp), style="dim")
        text.append(f" {entry.level.value:<8} ", style=LEVEL_COLORS[entry.level])
        text.append(entry.message)
    return text


class DashboardPanel(Static):
    """Static panel redrawn from the session on each tick."""

    DEFAULT_CSS = """
    DashboardPanel {
        border: round #334155;
        padding: 0 1;
    }
    """

    def __init__(self, title: str, id: Optional[str] = None) -> None:
        super().__init__(id=id)
        self.border_title = title


class DashboardApp(App):
    """Main Stream Monitor application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #status {
        dock: top;
        height: 1;
        padding: 0 1;
    }

    #left {
        width: 45%;
    }

    #orderbook {
        height: 1fr;
    }

    #metrics {
        height: auto;
    }

    #events-rate {
        height: 3;
    }

    #incidents {
        height: 1fr;
    }

    #logs {
        height: 12;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "restart", "Restart stream"),
        ("s", "start_publisher", "Start publisher"),
        ("x", "stop_publisher", "Stop publisher"),
        ("1", "scenario(0)", SCENARIOS[0].label),
        ("2", "scenario(1)", SCENARIOS[1].label),
        ("3", "scenario(2)", SCENARIOS[2].label),
        ("4", "scenario(3)", SCENARIOS[3].label),
    ]

    def __init__(self, session: MonitorSession, log_lines: int = 10) -> None:
        super().__init__()
        self.session = session
        self.log_lines = log_lines
        self.events_rate = EventsRateSampler()
        self._drawn_version = -1

    def compose(self) -> ComposeResult:
        yield Static(id="status")
        with Horizontal():
            with Vertical(id="left"):
                yield DashboardPanel("Orderbook", id="orderbook")
            with Vertical():
                yield DashboardPanel("Metrics", id="metrics")
                yield DashboardPanel("Events rate", id="events-rate")
                yield DashboardPanel("Incidents", id="incidents")
        yield DashboardPanel("Logs", id="logs")
        yield Footer()

    async def on_mount(self) -> None:
        await self.session.start()
        self.set_interval(REFRESH_INTERVAL_SEC, self._refresh_panels)
        self.set_interval(RATE_SAMPLE_INTERVAL_SEC, self._sample_events_rate)

    def _refresh_panels(self) -> None:
        session = self.session
        store = session.store
        consumer = session.consumer

        # Status bar is cheap and carries the live message rate
        self.query_one("#status", Static).update(render_status(
            consumer.state,
            store.metrics.current_scenario,
            store.message_rate(),
            consumer.trading_stopped,
            consumer.error,
            session.poller.is_running,
        ))

        if store.version == self._drawn_version:
            return
        self._drawn_version = store.version

        self.query_one("#orderbook", DashboardPanel).update(
            render_orderbook(store.orderbook, threshold_ms=session.detector.threshold_ms)
        )
        self.query_one("#metrics", DashboardPanel).update(
            render_metrics(store.metrics, store.performance.as_arrays())
        )
        self.query_one("#incidents", DashboardPanel).update(render_incidents(store.recent_incidents(20)))
        self.query_one("#logs", DashboardPanel).update(render_logs(store.logs.latest(self.log_lines)))

    def _sample_events_rate(self) -> None:
        consumer = self.session.consumer
        self.events_rate.sample(
            self.session.store.metrics.total_events_received,
            connected=consumer.is_connected,
        )
        self.query_one("#events-rate", DashboardPanel).update(
            render_events_rate(self.events_rate, consumer.is_connected)
        )

    async def _control(self, label: str, call) -> None:
        try:
            await call
        except ControlAPIError as e:
            logger.warning("%s failed: %s", label, e)
            self.session.store.add_log(LogLevel.ERROR, f"{label} failed: {e}")

    def action_restart(self) -> None:
        """Acknowledge a trading stop / restart the stream (bound to 'r')."""
        self.events_rate.reset()
        self.session.acknowledge_trading_stop()

    async def action_start_publisher(self) -> None:
        await self._control("Start publisher", self.session.start_publisher())

    async def action_stop_publisher(self) -> None:
        await self._control("Stop publisher", self.session.stop_publisher())

    async def action_scenario(self, index: int) -> None:
        scenario = SCENARIOS[index]
        await self._control(f"Switch to {scenario.label}", self.session.switch_scenario(scenario.value))


async def run_ui(session: MonitorSession) -> None:
    """Run the TUI application."""
    app = DashboardApp(session)
    try:
        await app.run_async()
    finally:
        await session.close()
