"""
Application context.

MonitorSession owns the one ConnectionManager for the process and hands it to
its consumer by reference. It also wires the control API: publisher start /
stop cycle the stream, scenario switches echo the profile name into metrics.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import Settings
from .datafeed.connection import ConnectionManager
from .datafeed.consumer import StreamConsumer
from .datafeed.control import ControlClient, PublisherStatusPoller
from .datafeed.transport import TransportFactory, build_transport_factory
from .engine.staleness import StalenessDetector
from .engine.store import MonitorStore
from .types import LogLevel

logger = logging.getLogger(__name__)


class MonitorSession:
    """
    Top-level wiring: settings -> manager, store, detector, consumer, control.

    Usage:
        session = MonitorSession(Settings.from_env())
        await session.start()
        ...
        await session.close()
    """

    def __init__(
        self,
        settings: Settings,
        transport_factory: Optional[TransportFactory] = None,
        control: Optional[ControlClient] = None,
    ) -> None:
        self.settings = settings

        self.manager = ConnectionManager(
            transport_factory or build_transport_factory(settings.transport, settings.stream_url),
            base_delay=settings.base_delay_sec,
            max_attempts=settings.max_reconnect_attempts,
            auto_reconnect=settings.auto_reconnect,
        )
        self.store = MonitorStore(
            capacity=settings.history_capacity,
            rate_window_sec=settings.rate_window_sec,
            sequence_policy=settings.sequence_policy,
        )
        self.detector = StalenessDetector(settings.stale_threshold_ms)
        self.consumer = StreamConsumer(self.manager, self.store, self.detector)

        self.control = control or ControlClient(settings.server_url)
        self.poller = PublisherStatusPoller(self.control, settings.status_poll_interval_sec)

    @property
    def trading_stopped(self) -> bool:
        return self.consumer.trading_stopped

    async def start(self, poll_status: bool = True) -> None:
        logger.info(
            "Starting session: %s via %s (%s profile)",
            self.settings.stream_url, self.settings.transport, self.settings.environment,
        )
        self.consumer.attach()
        if poll_status:
            self.poller.start()

    async def close(self) -> None:
        await self.poller.stop()
        self.consumer.detach()
        await self.manager.shutdown()
        await self.control.close()

    async def start_publisher(self) -> dict:
        """POST /start, then cycle the stream."""
        result = await self.control.start()
        self.store.add_log(LogLevel.INFO, "Publisher started")
        self.consumer.restart()
        return result

    async def stop_publisher(self) -> dict:
        """POST /stop, then drop the stream without reconnecting."""
        result = await self.control.stop()
        self.store.add_log(LogLevel.INFO, "Publisher stopped")
        self.manager.disconnect()
        return result

    async def switch_scenario(self, name: str) -> dict:
        """POST /config/profile/{name} and echo the scenario name."""
        result = await self.control.switch_profile(name)
        self.store.update_metrics(current_scenario=name)
        self.store.add_log(LogLevel.INFO, f"Switched to scenario: {name}")
        return result

    def acknowledge_trading_stop(self) -> None:
        """Operator acknowledgement after a staleness trip: re-arm and reconnect."""
        if self.consumer.trading_stopped:
            self.store.add_log(LogLevel.INFO, "Trading stop acknowledged, restarting stream")
        self.consumer.restart()
