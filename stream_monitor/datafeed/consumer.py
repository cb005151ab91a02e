"""
Consumer adapter: binds one store to the shared connection manager.

Each consumer subscribes to the manager, routes envelopes through a Dispatcher
into its own MonitorStore, and turns a staleness trip into an immediate
manager.disconnect(). A trip is reported as "trading stopped", separate from
ordinary connection loss, and stays that way until restart().
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..engine.dispatch import Dispatcher
from ..engine.staleness import StalenessDetector
from ..engine.store import MonitorStore
from ..types import ConnectionState, Envelope, ErrorKind, LogLevel, StreamError
from .connection import ConnectionManager

logger = logging.getLogger(__name__)


class StreamConsumer:
    """
    Per-consumer binding of manager -> dispatcher -> store.

    Usage:
        consumer = StreamConsumer(manager, store, detector)
        consumer.attach()       # subscribe, connect if needed
        ...
        consumer.restart()      # after a trip: re-arm and reconnect
        consumer.detach()
    """

    def __init__(
        self,
        manager: ConnectionManager,
        store: MonitorStore,
        detector: StalenessDetector,
        name: str = "dashboard",
    ) -> None:
        self.manager = manager
        self.store = store
        self.detector = detector
        self.name = name
        self.dispatcher = Dispatcher(store, detector)

        self.state = ConnectionState.DISCONNECTED
        self.error: Optional[str] = None
        self.trading_stopped = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self, connect: bool = True) -> None:
        """Subscribe to the manager and connect if nobody has yet."""
        if self._unsubscribe is None:
            logger.debug("Consumer %s subscribing", self.name)
            self._unsubscribe = self.manager.subscribe(
                self._on_state, self._on_message, self._on_error
            )
        if connect and not self.manager.is_connected():
            self.manager.connect()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            logger.debug("Consumer %s unsubscribing", self.name)
            self._unsubscribe()
            self._unsubscribe = None

    def restart(self) -> None:
        """
        Explicit stream restart: the acknowledgement that re-arms the breaker.
        """
        logger.info("Consumer %s restarting stream", self.name)
        self.manager.disconnect()
        self.detector.reset()
        self.trading_stopped = False
        self.error = None
        self.attach()

    def _on_state(self, state: ConnectionState) -> None:
        previous = self.state
        self.state = state

        if state is ConnectionState.CONNECTED:
            self.error = None
            self.store.add_log(LogLevel.INFO, "Stream connected successfully")
        elif (
            state is ConnectionState.DISCONNECTED
            and previous is ConnectionState.CONNECTED
            and not self.trading_stopped  # the trip already logged why
        ):
            self.store.add_log(LogLevel.WARNING, "Stream connection lost")

    def _on_message(self, envelope: Envelope) -> None:
        result = self.dispatcher.dispatch(envelope)
        if result.tripped:
            self.trading_stopped = True
            self.manager.disconnect()

    def _on_error(self, error: StreamError) -> None:
        if error.kind is not ErrorKind.PARSE:
            self.error = error.message
        self.store.add_log(LogLevel.ERROR, error.message)
