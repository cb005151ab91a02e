"""
Shared push-connection manager.

Handles:
1. Exactly one live transport at a time, shared by any number of subscribers
2. Reconnection with exponential backoff (base_delay * 2^attempt) up to a ceiling
3. Fan-out of every envelope to every subscriber, in arrival order
4. Distinct error notifications for connect failures, transport errors,
   malformed envelopes and retry exhaustion

Concurrency:
- Everything runs on one asyncio loop; connect()/disconnect() are plain calls
  that must be made while the loop is running
- One reader task per attempt owns its transport and always closes it
- Every attempt and every explicit disconnect bumps an epoch counter; reader
  tasks and backoff timers carry the epoch they were started for and do
  nothing once it is superseded
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, NamedTuple, Optional, TypeVar

from ..errors import EnvelopeError
from ..types import ConnectionState, Envelope, ErrorKind, StreamError
from .envelope import parse_envelope
from .transport import NORMAL_CLOSE_CODES, Transport, TransportFactory

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_SEC = 2.0
DEFAULT_MAX_ATTEMPTS = 5

RETRIES_EXHAUSTED_MESSAGE = "Connection failed - max attempts reached"

T = TypeVar("T")

StateCallback = Callable[[ConnectionState], None]
MessageCallback = Callable[[Envelope], None]
ErrorCallback = Callable[[StreamError], None]


class Subscriber(NamedTuple):
    on_state: StateCallback
    on_message: MessageCallback
    on_error: ErrorCallback


class ConnectionManager:
    """
    One logical push connection shared by all consumers.

    Constructed once by the application context and passed by reference to
    every consumer adapter.

    Usage:
        manager = ConnectionManager(lambda: WebSocketTransport(url))
        unsubscribe = manager.subscribe(on_state, on_message, on_error)
        manager.connect()
        ...
        manager.disconnect()
        await manager.wait_closed()

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        base_delay: float = DEFAULT_BASE_DELAY_SEC,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        auto_reconnect: bool = True,
    ) -> None:
        self._transport_factory = transport_factory
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.auto_reconnect = auto_reconnect

        self._subscribers: dict[int, Subscriber] = {}
        self._tokens = itertools.count()

        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._epoch = 0

        self._transport: Optional[Transport] = None
        self._reader: Optional[asyncio.Task] = None
        self._retiring: set[asyncio.Task] = set()
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

    # Introspection

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Consecutive failed attempts since the last successful open."""
        return self._attempt

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (0-indexed)."""
        return self.base_delay * (2 ** attempt)

    # Subscription

    def subscribe(
        self,
        on_state: StateCallback,
        on_message: MessageCallback,
        on_error: ErrorCallback,
    ) -> Callable[[], None]:
        """
        Register a consumer. Returns an unsubscribe function.

        A subscriber joining while the transport is open is told CONNECTED
        immediately; otherwise it hears nothing until the next state change.
        """
        token = next(self._tokens)
        subscriber = Subscriber(on_state, on_message, on_error)
        self._subscribers[token] = subscriber

        if self.is_connected():
            self._invoke(subscriber.on_state, ConnectionState.CONNECTED, "connection")

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    # Lifecycle

    def connect(self) -> None:
        """
        Establish the shared transport. No-op while connecting or connected.

        From FAILED this is the explicit restart that resets the attempt
        counter. Transport failures are reported to error subscribers, never
        raised here.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("Connection already %s, skipping", self._state.value)
            return

        if self._state is ConnectionState.FAILED:
            self._attempt = 0

        self._start_attempt()

    def disconnect(self) -> None:
        """
        Tear down unconditionally. Never triggers a reconnect.

        Cancels any pending backoff timer, retires the transport, resets the
        attempt counter and tells every subscriber DISCONNECTED.
        """
        self._epoch += 1
        self._cancel_reconnect()
        self._retire_reader()
        self._attempt = 0
        logger.info("Stream disconnected by caller")
        self._set_state(ConnectionState.DISCONNECTED, force=True)

    async def wait_closed(self) -> None:
        """Wait until every retired transport has finished closing."""
        pending = set(self._retiring)
        if pending:
            await asyncio.wait(pending)

    async def shutdown(self) -> None:
        self.disconnect()
        await self.wait_closed()

    # Attempt state machine

    def _start_attempt(self) -> None:
        self._cancel_reconnect()
        self._retire_reader()
        self._epoch += 1
        epoch = self._epoch

        logger.info(
            "Opening stream connection (attempt %d/%d)",
            self._attempt + 1, self.max_attempts,
        )
        self._set_state(ConnectionState.CONNECTING)
        if epoch != self._epoch:
            return  # a state subscriber disconnected us

        try:
            transport = self._transport_factory()
        except Exception as e:
            logger.error("Error creating transport: %s", e)
            self._notify_error(StreamError(
                ErrorKind.CONNECT, f"Failed to create stream connection: {e}"
            ))
            self._on_closed(epoch, None)
            return

        previous = set(self._retiring)
        self._reader = asyncio.get_running_loop().create_task(
            self._run(epoch, transport, previous)
        )

    async def _run(
        self,
        epoch: int,
        transport: Transport,
        previous: set[asyncio.Task],
    ) -> None:
        # The previous transport must be fully closed before this one opens
        if previous:
            await asyncio.wait(previous)
        if epoch != self._epoch:
            return

        self._transport = transport
        try:
            try:
                await transport.open()
            except Exception as e:
                if epoch == self._epoch:
                    logger.warning("Stream connection to %s failed: %s", transport.url, e)
                    self._notify_error(StreamError(ErrorKind.CONNECT, f"Connection failed: {e}"))
            else:
                if epoch == self._epoch:
                    self._on_open(transport)
                # A CONNECTED subscriber may have disconnected already
                if epoch == self._epoch:
                    await self._pump(epoch, transport)
        finally:
            try:
                await transport.close()
            except Exception:
                logger.exception("Error closing transport")

        if epoch == self._epoch:
            self._on_closed(epoch, transport.close_code)

    async def _pump(self, epoch: int, transport: Transport) -> None:
        """Read frames until the transport ends, errors, or the epoch moves on."""
        try:
            async for frame in transport.frames():
                self._handle_frame(frame)
                if epoch != self._epoch:
                    break
        except Exception as e:
            if epoch == self._epoch:
                logger.warning("Stream transport error: %s", e)
                self._notify_error(StreamError(ErrorKind.TRANSPORT, f"Stream connection error: {e}"))

    def _on_open(self, transport: Transport) -> None:
        self._attempt = 0
        logger.info("Stream connected: %s", transport.url)
        self._set_state(ConnectionState.CONNECTED)

    def _on_closed(self, epoch: int, close_code: Optional[int]) -> None:
        self._reader = None
        self._transport = None
        self._set_state(ConnectionState.DISCONNECTED)
        if epoch != self._epoch:
            return

        if close_code in NORMAL_CLOSE_CODES:
            logger.info("Stream closed normally (code %s)", close_code)
            self._attempt = 0
            return

        logger.warning("Stream closed unexpectedly (code %s)", close_code)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self.auto_reconnect:
            logger.info("Auto-reconnect disabled, staying disconnected")
            return

        if self._attempt >= self.max_attempts:
            logger.error("Max reconnection attempts reached (%d)", self.max_attempts)
            self._set_state(ConnectionState.FAILED)
            self._notify_error(StreamError(ErrorKind.RETRIES_EXHAUSTED, RETRIES_EXHAUSTED_MESSAGE))
            return

        delay = self.backoff_delay(self._attempt)
        self._attempt += 1
        self._cancel_reconnect()

        logger.info(
            "Scheduling reconnect in %.2fs (attempt %d/%d)",
            delay, self._attempt, self.max_attempts,
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._on_reconnect_timer, self._epoch)

    def _on_reconnect_timer(self, epoch: int) -> None:
        if epoch != self._epoch:
            logger.debug("Ignoring stale reconnect timer (epoch %d, current %d)", epoch, self._epoch)
            return
        self._reconnect_handle = None
        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._start_attempt()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _retire_reader(self) -> None:
        reader = self._reader
        self._reader = None
        self._transport = None
        if reader is not None and not reader.done():
            # A reader retiring itself from inside dispatch notices the epoch
            # change after the current frame and closes its transport normally
            if reader is not asyncio.current_task():
                reader.cancel()
            self._retiring.add(reader)
            reader.add_done_callback(self._retiring.discard)

    # Fan-out

    def _handle_frame(self, frame: bytes | str) -> None:
        try:
            envelope = parse_envelope(frame)
        except EnvelopeError as e:
            logger.error("Error parsing message: %s", e)
            self._notify_error(StreamError(ErrorKind.PARSE, f"Failed to parse message: {e}"))
            return

        for subscriber in list(self._subscribers.values()):
            self._invoke(subscriber.on_message, envelope, "message")

    def _set_state(self, state: ConnectionState, force: bool = False) -> None:
        if state is self._state and not force:
            return
        self._state = state
        for subscriber in list(self._subscribers.values()):
            self._invoke(subscriber.on_state, state, "connection")

    def _notify_error(self, error: StreamError) -> None:
        for subscriber in list(self._subscribers.values()):
            self._invoke(subscriber.on_error, error, "error")

    @staticmethod
    def _invoke(callback: Callable[[T], None], arg: T, label: str) -> None:
        try:
            callback(arg)
        except Exception:
            logger.exception("Error in %s subscriber", label)
