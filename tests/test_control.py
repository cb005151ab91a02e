# tests/test_control.py
from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer, unused_port

from stream_monitor.datafeed.control import (
    ControlClient, PublisherStatusPoller, publisher_is_running,
)
from stream_monitor.errors import ControlAPIError


@pytest_asyncio.fixture
async def control(publisher):
    server = TestServer(publisher.app())
    await server.start_server()
    client = ControlClient(str(server.make_url("/")))
    yield client
    await client.close()
    await server.close()


@pytest.mark.asyncio
async def test_get_endpoints(control):
    assert await control.health() == {'status': 'healthy'}
    assert await control.profiles() == ['stable-mode', 'burst-mode']


@pytest.mark.asyncio
async def test_start_stop_and_switch(control, publisher):
    assert await control.start() == {'status': 'started'}
    assert await control.switch_profile('burst-mode') == {'profile': 'burst-mode'}
    assert await control.stop() == {}   # empty body

    assert publisher.calls == ['start', 'profile:burst-mode', 'stop']


@pytest.mark.asyncio
async def test_error_status_raises_with_status(control):
    with pytest.raises(ControlAPIError) as excinfo:
        await control.status()
    assert excinfo.value.status == 500
    assert "internal error" in str(excinfo.value)

    with pytest.raises(ControlAPIError) as excinfo:
        await control.switch_profile('no-such-profile')
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_invalid_json_raises(control):
    with pytest.raises(ControlAPIError) as excinfo:
        await control.metrics_summary()
    assert excinfo.value.status is None


@pytest.mark.asyncio
@pytest.mark.parametrize('name', ["", "a/b"])
async def test_switch_profile_rejects_bad_names(control, publisher, name):
    with pytest.raises(ValueError):
        await control.switch_profile(name)
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_unreachable_server_raises():
    async with ControlClient(f"http://127.0.0.1:{unused_port()}", timeout=2.0) as client:
        with pytest.raises(ControlAPIError):
            await client.health()


def test_publisher_is_running():
    assert publisher_is_running({'publisher': {'is_running': True}}) is True
    assert publisher_is_running({'publisher': {'is_running': False}}) is False
    assert publisher_is_running({'publisher': {}}) is None
    assert publisher_is_running(['not', 'a', 'dict']) is None


@pytest.mark.asyncio
async def test_poller_tracks_publisher_state(control, publisher):
    poller = PublisherStatusPoller(control, interval_sec=60)

    assert await poller.poll_once() is False
    await control.start()
    assert await poller.poll_once() is True

    # failures keep the last known value
    publisher.status_fails = True
    assert await poller.poll_once() is True
    assert poller.last_error is not None

    publisher.status_fails = False
    await poller.poll_once()
    assert poller.last_error is None
    assert poller.last_status == {'publisher': {'is_running': True}}


@pytest.mark.asyncio
async def test_poller_start_and_stop(control, until):
    poller = PublisherStatusPoller(control, interval_sec=0.01)
    poller.start()
    assert poller.active

    await until(lambda: poller.last_status is not None)
    await poller.stop()

    assert not poller.active
    assert poller.is_running is False
    await poller.stop()   # idempotent
