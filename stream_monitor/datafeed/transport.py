"""
Push transports over aiohttp.

Two interchangeable transports carry the same JSON envelopes:
1. WebSocketTransport - duplex socket, one envelope per text frame
2. SSETransport - Server-Sent Events, one envelope per event's data field

A transport is single-use: open() once, iterate frames() until it ends or
raises TransportError, then close(). The ConnectionManager owns its lifetime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Protocol

import aiohttp

from ..errors import TransportError

logger = logging.getLogger(__name__)

# RFC 6455 close codes the publisher uses for an orderly shutdown
NORMAL_CLOSE_CODES = frozenset({1000, 1001})
CLIENT_CLOSE_CODE = 1000

DEFAULT_OPEN_TIMEOUT_SEC = 10.0


class Transport(Protocol):
    """What the ConnectionManager needs from a push transport."""

    url: str

    async def open(self) -> None: ...

    def frames(self) -> AsyncIterator[bytes | str]: ...

    @property
    def close_code(self) -> Optional[int]: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], Transport]


class WebSocketTransport:
    """
    WebSocket push transport.

    Usage:
        transport = WebSocketTransport("ws://127.0.0.1:8000/ws")
        await transport.open()
        async for frame in transport.frames():
            ...
        await transport.close()
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT_SEC,
        heartbeat: Optional[float] = None,
    ) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self.heartbeat = heartbeat
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=self.heartbeat),
                timeout=self.open_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"WebSocket connect to {self.url} failed: {e}") from e

    async def frames(self) -> AsyncIterator[bytes | str]:
        if self._ws is None:
            raise TransportError("transport not open")
        ws = self._ws
        try:
            # Iteration stops on CLOSE / CLOSING / CLOSED
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    yield msg.data
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise TransportError(f"WebSocket error: {ws.exception()}")
        except aiohttp.ClientError as e:
            raise TransportError(f"WebSocket stream failed: {e}") from e

    @property
    def close_code(self) -> Optional[int]:
        return self._ws.close_code if self._ws is not None else None

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=CLIENT_CLOSE_CODE, message=b"Cleanup")
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


class SSETransport:
    """
    Server-Sent Events push transport.

    Only `data:` fields are used; multi-line data is joined with newlines and
    dispatched on the blank line that terminates each event. Comment lines
    (":keepalive") are ignored. SSE has no close codes, so the end of the
    stream always counts as an unexpected close.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT_SEC,
    ) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._session = session
        self._owns_session = session is None
        self._response: Optional[aiohttp.ClientResponse] = None

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._response = await self._session.get(
                self.url,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.open_timeout),
            )
            self._response.raise_for_status()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"SSE connect to {self.url} failed: {e}") from e

    async def frames(self) -> AsyncIterator[bytes | str]:
        if self._response is None:
            raise TransportError("transport not open")

        data_lines: list[str] = []
        try:
            async for raw_line in self._response.content:
                # Undecodable bytes become U+FFFD so the frame fails as a parse error
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")

                if not line:
                    if data_lines:
                        yield "\n".join(data_lines)
                        data_lines = []
                    continue

                if line.startswith(":"):
                    continue

                name, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if name == "data":
                    data_lines.append(value)
        except aiohttp.ClientError as e:
            raise TransportError(f"SSE stream failed: {e}") from e

    @property
    def close_code(self) -> Optional[int]:
        return None

    async def close(self) -> None:
        if self._response is not None:
            self._response.close()
            self._response = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


def build_transport_factory(kind: str, url: str) -> TransportFactory:
    """Return a zero-arg factory that builds a fresh transport per attempt."""
    if kind == "ws":
        return lambda: WebSocketTransport(url)
    if kind == "sse":
        return lambda: SSETransport(url)
    raise ValueError(f"Unknown transport kind: {kind!r}")
