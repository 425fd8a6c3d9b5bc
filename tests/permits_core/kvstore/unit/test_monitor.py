from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from redis import exceptions as redis_exceptions

from permits_core.kvstore import (
    ConnectionMonitor,
    ResilientClient,
    build_connection_monitor,
)
from permits_core.kvstore.monitor import run_connection_loop
from permits_core.settings import KeyValueSettings
from tests.permits_core.support.fakes import FakeLogger, FakeRedis

pytestmark = pytest.mark.asyncio


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def test_run_connection_loop_checks_until_stopped() -> None:
    stop_event = asyncio.Event()
    checks: list[int] = []

    async def _check_once() -> bool:
        checks.append(len(checks))
        if len(checks) == 3:
            stop_event.set()
        return True

    await asyncio.wait_for(
        run_connection_loop(
            check_once=_check_once,
            stop_event=stop_event,
            interval_seconds=0.01,
        ),
        timeout=1.0,
    )

    assert len(checks) == 3


async def test_check_once_restores_disconnected_client(
    fake_redis: FakeRedis, fake_logger: FakeLogger
) -> None:
    client = ResilientClient(fake_redis, connected=False, logger=fake_logger)
    monitor = ConnectionMonitor(client=client, interval_seconds=30.0)

    assert await monitor.check_once() is True

    assert client.is_connected is True
    assert fake_logger.count("info", "kvstore.connected") == 1


async def test_check_once_marks_client_disconnected_on_failed_ping(
    fake_redis: FakeRedis, fake_logger: FakeLogger
) -> None:
    client = ResilientClient(fake_redis, connected=True, logger=fake_logger)
    monitor = ConnectionMonitor(client=client, interval_seconds=30.0)
    fake_redis.ping_errors = [redis_exceptions.ConnectionError("refused")]

    assert await monitor.check_once() is False

    assert client.is_connected is False
    assert fake_logger.count("warning", "kvstore.disconnected") == 1


async def test_background_monitor_recovers_connection_and_stops(
    fake_redis: FakeRedis, fake_logger: FakeLogger
) -> None:
    client = ResilientClient(fake_redis, connected=False, logger=fake_logger)
    monitor = ConnectionMonitor(client=client, interval_seconds=0.01)
    fake_redis.ping_errors = [redis_exceptions.ConnectionError("refused")]

    await monitor.start()
    await monitor.start()
    assert monitor.running is True

    await _wait_until(lambda: client.is_connected)
    await monitor.stop()

    assert monitor.running is False
    assert fake_redis.commands().count("ping") >= 2
    assert await client.get("x") is None
    assert "get" in fake_redis.commands()


async def test_stop_without_start_is_noop(
    fake_redis: FakeRedis, fake_logger: FakeLogger
) -> None:
    client = ResilientClient(fake_redis, logger=fake_logger)
    monitor = ConnectionMonitor(client=client, interval_seconds=0.01)

    await monitor.stop()

    assert monitor.running is False


async def test_build_connection_monitor_uses_health_check_interval(
    fake_logger: FakeLogger,
) -> None:
    settings = KeyValueSettings(health_check_interval_ms=2500)
    client = ResilientClient(None, logger=fake_logger)

    monitor = build_connection_monitor(client, settings)

    assert monitor._interval_seconds == 2.5
    assert monitor.running is False
