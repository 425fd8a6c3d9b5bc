from __future__ import annotations

from typing import Any, cast

import pytest
import redis.asyncio as redis_asyncio
from redis import exceptions as redis_exceptions

import permits_core.kvstore.factory as factory_mod
from permits_core.circuit_breaker import CircuitState
from permits_core.kvstore import (
    FallbackStore,
    build_resilient_client,
    counts_toward_breaker,
    open_resilient_client,
)
from permits_core.settings import KeyValueSettings
from tests.permits_core.support.fakes import FakeLogger, FakeRedis

pytestmark = pytest.mark.asyncio


def _settings(**overrides: object) -> KeyValueSettings:
    return KeyValueSettings(**cast(Any, overrides))


async def test_disabled_outside_production_uses_memory_store(
    fake_logger: FakeLogger,
) -> None:
    client = build_resilient_client(
        _settings(environment="development"), logger=fake_logger
    )

    assert client.name == "memory"
    assert client.is_connected is True
    assert isinstance(client._client, FallbackStore)
    assert await client.set("permit:1", "active") == "OK"
    assert await client.get("permit:1") == "active"
    assert fake_logger.count("info", "kvstore.backend_selected") == 1
    assert fake_logger.count("warning", "kvstore.fallback_store_active") == 1


async def test_memory_store_counter_misuse_keeps_breaker_closed(
    fake_logger: FakeLogger,
) -> None:
    client = build_resilient_client(
        _settings(environment="development", failure_threshold=5),
        logger=fake_logger,
    )
    await client.set("session", "abc")

    for _ in range(5):
        assert await client.increment("session") == 1

    assert client.circuit_breaker.state == CircuitState.CLOSED
    assert await client.set("other", "v") == "OK"
    assert await client.get("other") == "v"
    assert client.health_status().healthy is True


async def test_memory_store_keys_carry_the_prefix(fake_logger: FakeLogger) -> None:
    client = build_resilient_client(
        _settings(environment="test", key_prefix="pd:"), logger=fake_logger
    )

    await client.set("config:a", "1")

    assert await client.keys("config:*") == ["pd:config:a"]


async def test_disabled_in_production_runs_fully_degraded(
    fake_logger: FakeLogger,
) -> None:
    client = build_resilient_client(
        _settings(environment="production"), logger=fake_logger
    )

    assert client.is_connected is False
    assert await client.set("permit:1", "active") == "OK"
    assert await client.get("permit:1") is None
    assert await client.connect() is False
    assert client.health_status().healthy is False
    assert fake_logger.count("error", "kvstore.backend_unavailable") == 1


async def test_enabled_builds_disconnected_redis_client(
    fake_logger: FakeLogger,
) -> None:
    settings = _settings(
        enabled=True,
        host="cache.internal",
        failure_threshold=7,
        reset_timeout_ms=2000,
    )

    client = build_resilient_client(settings, logger=fake_logger)

    try:
        assert isinstance(client._client, redis_asyncio.Redis)
        assert client.name == "redis"
        assert client.is_connected is False
        snapshot = client.circuit_breaker.get_state()
        assert snapshot.failure_threshold == 7
        assert snapshot.reset_timeout_ms == 2000
        assert snapshot.state == CircuitState.CLOSED
    finally:
        await client.aclose()


async def test_enabled_uses_redis_failure_classifier_by_default(
    monkeypatch: pytest.MonkeyPatch,
    fake_logger: FakeLogger,
    fake_redis: FakeRedis,
) -> None:
    monkeypatch.setattr(factory_mod.redis_asyncio, "Redis", lambda **_: fake_redis)
    client = build_resilient_client(
        _settings(enabled=True, host="cache.internal", failure_threshold=1),
        logger=fake_logger,
    )
    assert await client.connect() is True
    fake_redis.error = redis_exceptions.ResponseError("WRONGTYPE")

    assert await client.increment("x") == 1

    assert client.circuit_breaker.state == CircuitState.CLOSED
    assert counts_toward_breaker(fake_redis.error) is False


async def test_open_resilient_client_connects_redis_backend(
    monkeypatch: pytest.MonkeyPatch,
    fake_logger: FakeLogger,
    fake_redis: FakeRedis,
) -> None:
    options: dict[str, object] = {}

    def _fake_redis_factory(**kwargs: object) -> FakeRedis:
        options.update(kwargs)
        return fake_redis

    monkeypatch.setattr(factory_mod.redis_asyncio, "Redis", _fake_redis_factory)

    client = await open_resilient_client(
        _settings(enabled=True, host="cache.internal", password="secret"),
        logger=fake_logger,
    )

    assert client.is_connected is True
    assert fake_redis.commands() == ["ping"]
    assert options["host"] == "cache.internal"
    assert options["password"] == "secret"
    assert options["decode_responses"] is True


async def test_open_resilient_client_returns_disconnected_client_on_failure(
    monkeypatch: pytest.MonkeyPatch,
    fake_logger: FakeLogger,
    fake_redis: FakeRedis,
) -> None:
    fake_redis.error = redis_exceptions.ConnectionError("refused")
    monkeypatch.setattr(factory_mod.redis_asyncio, "Redis", lambda **_: fake_redis)

    client = await open_resilient_client(
        _settings(enabled=True, host="cache.internal", connect_attempts=1),
        logger=fake_logger,
    )

    assert client.is_connected is False
    assert await client.get("x") is None
    assert fake_logger.count("error", "kvstore.connect_failed") == 1


async def test_open_resilient_client_skips_connect_for_memory_store(
    fake_logger: FakeLogger,
) -> None:
    client = await open_resilient_client(
        _settings(environment="test"), logger=fake_logger
    )

    assert client.is_connected is True
    assert client.health_status().reconnect_attempts == 0
