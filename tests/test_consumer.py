# tests/test_consumer.py
from __future__ import annotations

import asyncio

import pytest

from stream_monitor.datafeed.connection import ConnectionManager
from stream_monitor.datafeed.consumer import StreamConsumer
from stream_monitor.engine.dispatch import CIRCUIT_BREAKER_INCIDENT
from stream_monitor.engine.staleness import StalenessDetector
from stream_monitor.engine.store import MonitorStore
from stream_monitor.types import ConnectionState, LogLevel


def build(factory, threshold_ms: float = 1000.0):
    manager = ConnectionManager(factory, base_delay=0.01)
    store = MonitorStore()
    detector = StalenessDetector(threshold_ms)
    consumer = StreamConsumer(manager, store, detector)
    return manager, store, detector, consumer


def messages(store, level=None):
    return [e.message for e in store.logs if level is None or e.level is level]


@pytest.mark.asyncio
async def test_attach_connects_and_logs(fake_factory, until):
    manager, store, _, consumer = build(fake_factory)

    consumer.attach()
    await until(lambda: consumer.is_connected)

    assert consumer.attached
    assert "Stream connected successfully" in messages(store, LogLevel.INFO)
    await manager.shutdown()


@pytest.mark.asyncio
async def test_second_consumer_shares_the_connection(fake_factory, until):
    manager, store, detector, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    other = StreamConsumer(manager, MonitorStore(), StalenessDetector(), name="sidebar")
    other.attach()

    assert other.is_connected
    assert len(fake_factory.transports) == 1
    await manager.shutdown()


@pytest.mark.asyncio
async def test_envelopes_reach_the_store(fake_factory, frame, orderbook, until):
    manager, store, _, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    fake_factory.last.feed(frame('orderbook_update', orderbook(seq=7)))
    fake_factory.last.feed(frame('heartbeat', {'queue_size': 3, 'server_status': 'healthy'}))
    await until(lambda: store.metrics.queue_size == 3)

    assert store.orderbook.sequence_id == 7
    assert store.orderbook.bids[0].price == 99.99
    assert store.message_count == 1
    await manager.shutdown()


@pytest.mark.asyncio
async def test_trip_disconnects_exactly_once_without_reconnect(
    fake_factory, frame, orderbook, until, monkeypatch
):
    manager, store, detector, consumer = build(fake_factory)

    disconnects = []
    original = manager.disconnect

    def counting_disconnect():
        disconnects.append(1)
        original()

    monkeypatch.setattr(manager, 'disconnect', counting_disconnect)

    consumer.attach()
    await until(lambda: consumer.is_connected)

    transport = fake_factory.last
    transport.feed(frame('orderbook_update', orderbook(seq=1, age=1200, stale=True)))
    transport.feed(frame('orderbook_update', orderbook(seq=2, age=1300, stale=True)))
    await until(lambda: transport.closed)
    await manager.wait_closed()
    await asyncio.sleep(0.05)

    assert consumer.trading_stopped
    assert detector.tripped
    assert len(disconnects) == 1
    assert manager.state is ConnectionState.DISCONNECTED
    assert not manager.reconnect_pending
    assert len(fake_factory.transports) == 1

    incidents = [i for i in store.incidents if i.type == CIRCUIT_BREAKER_INCIDENT]
    assert len(incidents) == 1
    # the trip already explains the disconnect
    assert "Stream connection lost" not in messages(store)


@pytest.mark.asyncio
async def test_restart_rearms_and_reconnects(fake_factory, frame, orderbook, until):
    manager, store, detector, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    fake_factory.last.feed(frame('orderbook_update', orderbook(age=1500, stale=True)))
    await until(lambda: consumer.trading_stopped)
    await manager.wait_closed()

    consumer.restart()
    assert not consumer.trading_stopped
    assert not detector.tripped
    await until(lambda: consumer.is_connected)
    assert len(fake_factory.transports) == 2

    # The breaker can trip again after a restart
    fake_factory.last.feed(frame('orderbook_update', orderbook(seq=2, age=1500, stale=True)))
    await until(lambda: consumer.trading_stopped)
    assert detector.trip_count == 2
    assert len([i for i in store.incidents if i.type == CIRCUIT_BREAKER_INCIDENT]) == 2
    await manager.shutdown()


@pytest.mark.asyncio
async def test_connection_loss_is_logged(fake_factory, until):
    manager, store, _, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    fake_factory.last.end(close_code=1000)
    await until(lambda: consumer.state is ConnectionState.DISCONNECTED)

    assert "Stream connection lost" in messages(store, LogLevel.WARNING)
    assert not consumer.trading_stopped


@pytest.mark.asyncio
async def test_parse_errors_are_logged_but_do_not_set_error(fake_factory, until):
    manager, store, _, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    fake_factory.last.feed(b"[1, 2, 3]")
    await until(lambda: messages(store, LogLevel.ERROR))

    assert consumer.error is None
    assert messages(store, LogLevel.ERROR)[0].startswith("Failed to parse message:")
    await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_errors_set_error(make_factory, until):
    factory = make_factory(fail_open=1)
    manager, store, _, consumer = build(factory)
    manager.auto_reconnect = False

    consumer.attach()
    await until(lambda: consumer.error is not None)

    assert consumer.error == "Connection failed: connection refused"
    assert "Connection failed: connection refused" in messages(store, LogLevel.ERROR)


@pytest.mark.asyncio
async def test_detach_stops_updates(fake_factory, frame, until):
    manager, store, _, consumer = build(fake_factory)
    consumer.attach()
    await until(lambda: consumer.is_connected)

    consumer.detach()
    assert not consumer.attached
    fake_factory.last.feed(frame('heartbeat', {'queue_size': 9}))
    await asyncio.sleep(0.01)

    assert store.metrics.queue_size == 0
    await manager.shutdown()
