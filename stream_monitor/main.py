#!/usr/bin/env python3
"""
Stream Monitor - Real-time market-data and system-health stream client.

Usage:
    python -m stream_monitor.main --server-url http://127.0.0.1:8000

    Or headless (log lines only, no TUI):
    python -m stream_monitor.main --headless --transport sse

Controls:
    q - Quit
    r - Restart stream / acknowledge trading stop
    s / x - Start / stop publisher
    1-4 - Switch scenario
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from .config import ENV_PREFIX, PROFILES, TRANSPORTS, Settings
from .errors import ConfigError
from .types import SequencePolicy

HEADLESS_STATUS_INTERVAL_SEC = 5.0


def configure_logging(debug: bool, headless: bool) -> None:
    """RichHandler on the console when headless, Textual's devtools log otherwise."""
    level = logging.DEBUG if debug else logging.INFO

    if headless:
        from rich.logging import RichHandler
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_path=debug)
    else:
        from textual.logging import TextualHandler
        handler = TextualHandler()

    logging.basicConfig(level=level, format="%(name)s: %(message)s", handlers=[handler], force=True)
    # aiohttp access/client chatter is noise at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


async def run_headless(settings: Settings) -> None:
    """Run the stream without a UI, printing a status line periodically."""
    from rich.console import Console

    from .session import MonitorSession

    console = Console()
    session = MonitorSession(settings)
    await session.start()
    try:
        while True:
            await asyncio.sleep(HEADLESS_STATUS_INTERVAL_SEC)
            store, consumer = session.store, session.consumer
            console.print(
                f"[bold]{consumer.state.value}[/bold]"
                f"  seq={store.orderbook.sequence_id}"
                f"  mid={store.orderbook.mid_price:.2f}"
                f"  age={store.orderbook.data_age_ms:.0f}ms"
                f"  rate={store.message_rate():.1f}/s"
                f"  incidents={len(store.incidents)}"
                + ("  [bold red]TRADING STOPPED[/bold red]" if consumer.trading_stopped else "")
            )
    finally:
        await session.close()


async def main(settings: Settings, headless: bool) -> None:
    """Main entry point - runs the stream and the UI on one event loop."""

    if headless:
        await run_headless(settings)
        return

    # Import here to avoid slow startup for --help and --headless
    from .session import MonitorSession
    from .ui.dashboard import run_ui

    session = MonitorSession(settings)
    await run_ui(session)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream Monitor - live market-data and system-health dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m stream_monitor.main
    python -m stream_monitor.main --server-url https://publisher.example.com --env production
    python -m stream_monitor.main --transport sse --stale-threshold-ms 500 --headless
        """
    )

    parser.add_argument(
        "--server-url",
        help="Publisher origin (default: $STREAM_MONITOR_SERVER_URL or http://127.0.0.1:8000)"
    )

    parser.add_argument(
        "--env",
        choices=sorted(PROFILES),
        help="Deployment profile (default: $STREAM_MONITOR_ENV or development)"
    )

    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        help="Push transport: WebSocket or Server-Sent Events (default: ws)"
    )

    parser.add_argument(
        "--stale-threshold-ms",
        type=float,
        help="Data age that trips the circuit breaker (default: per profile)"
    )

    parser.add_argument(
        "--sequence-policy",
        choices=[p.value for p in SequencePolicy],
        help="Handling of out-of-order orderbook snapshots (default: replace)"
    )

    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Disable automatic reconnection"
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run without the TUI, logging to the console"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment first, then explicit CLI flags."""
    environ = dict(os.environ)
    if args.env:
        environ[ENV_PREFIX + "ENV"] = args.env
    settings = Settings.from_env(environ)

    overrides: dict[str, object] = {}
    if args.server_url:
        overrides["server_url"] = args.server_url
    if args.transport:
        overrides["transport"] = args.transport
    if args.stale_threshold_ms is not None:
        overrides["stale_threshold_ms"] = args.stale_threshold_ms
    if args.sequence_policy:
        overrides["sequence_policy"] = SequencePolicy(args.sequence_policy)
    if args.no_reconnect:
        overrides["auto_reconnect"] = False
    if args.debug:
        overrides["debug_logging"] = True

    return settings._replace(**overrides).validated()


def cli(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        parser.error(str(e))

    configure_logging(settings.debug_logging, args.headless)

    # Run
    try:
        asyncio.run(main(settings, args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
