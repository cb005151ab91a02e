# tests/conftest.py
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import orjson
import pytest
from aiohttp import web

from stream_monitor.errors import TransportError

_END = object()


class FakeTransport:
    """In-memory transport driven by the test through feed()/end()/fail()."""

    def __init__(self, factory: FakeTransportFactory, url: str) -> None:
        self.factory = factory
        self.url = url
        self.opened = False
        self.closed = False
        self._close_code: Optional[int] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    async def open(self) -> None:
        self.factory.opens += 1
        if self.factory.live:
            self.factory.overlaps += 1
        if self.factory.fail_open:
            self.factory.fail_open -= 1
            raise TransportError("connection refused")
        self.opened = True
        self.factory.live += 1

    async def frames(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    @property
    def close_code(self) -> Optional[int]:
        return self._close_code

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # closing takes a moment, like a real close handshake
        await asyncio.sleep(self.factory.close_delay)
        if self.opened:
            self.factory.live -= 1

    # Test controls

    def feed(self, frame: Any) -> None:
        self._queue.put_nowait(frame)

    def end(self, close_code: Optional[int] = None) -> None:
        self._close_code = close_code
        self._queue.put_nowait(_END)

    def fail(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)


class FakeTransportFactory:
    """
    Zero-arg transport factory that records every transport it builds.

    fail_open: number of upcoming open() calls that should fail.
    """

    def __init__(self, fail_open: int = 0, close_delay: float = 0.005) -> None:
        self.fail_open = fail_open
        self.close_delay = close_delay
        self.transports: list[FakeTransport] = []
        self.opens = 0
        self.live = 0
        self.overlaps = 0

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(self, "fake://stream")
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class Recorder:
    """Subscriber that records every callback."""

    def __init__(self) -> None:
        self.states: list = []
        self.messages: list = []
        self.errors: list = []

    def subscribe(self, manager) -> Callable[[], None]:
        return manager.subscribe(self.states.append, self.messages.append, self.errors.append)


def make_frame(msg_type: str, data: Optional[dict] = None, **extra: Any) -> bytes:
    payload: dict = {'type': msg_type, 'timestamp': '2024-01-01T00:00:00+00:00'}
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return orjson.dumps(payload)


def orderbook_data(seq: int = 1, age: float = 10.0, stale: bool = False) -> dict:
    return {
        'bids': [["99.99", "1.5"], ["99.98", "2.0"]],
        'asks': [["100.01", "1.0"], ["100.02", "3.0"]],
        'mid_price': 100.0,
        'spread': 0.02,
        'sequence_id': seq,
        'timestamp': '2024-01-01T00:00:00Z',
        'data_age_ms': age,
        'is_stale': stale,
        'processing_delay_ms': 1.5,
    }


class FakePublisher:
    """Minimal publisher control API."""

    def __init__(self) -> None:
        self.running = False
        self.profile = "stable-mode"
        self.calls: list[str] = []
        self.status_fails = False

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/health', self.health)
        app.router.add_get('/status', self.broken)
        app.router.add_get('/metrics/summary', self.not_json)
        app.router.add_get('/config/profiles', self.profiles)
        app.router.add_post('/start', self.start)
        app.router.add_post('/stop', self.stop)
        app.router.add_post('/config/profile/{name}', self.switch)
        app.router.add_get('/status/publisher', self.publisher_status)
        return app

    async def health(self, request):
        return web.json_response({'status': 'healthy'})

    async def broken(self, request):
        return web.Response(status=500, text="internal error")

    async def not_json(self, request):
        return web.Response(text="<html>oops</html>")

    async def profiles(self, request):
        return web.json_response(['stable-mode', 'burst-mode'])

    async def start(self, request):
        self.calls.append('start')
        self.running = True
        return web.json_response({'status': 'started'})

    async def stop(self, request):
        self.calls.append('stop')
        self.running = False
        return web.Response(status=204)

    async def switch(self, request):
        name = request.match_info['name']
        if name == 'no-such-profile':
            return web.json_response({'detail': 'unknown profile'}, status=404)
        self.calls.append(f'profile:{name}')
        self.profile = name
        return web.json_response({'profile': name})

    async def publisher_status(self, request):
        if self.status_fails:
            return web.Response(status=502, text="bad gateway")
        return web.json_response({'publisher': {'is_running': self.running}})


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def fake_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def make_factory() -> type[FakeTransportFactory]:
    return FakeTransportFactory


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def frame() -> Callable[..., bytes]:
    return make_frame


@pytest.fixture
def orderbook() -> Callable[..., dict]:
    return orderbook_data


@pytest.fixture
def until() -> Callable:
    return wait_until
