from __future__ import annotations

import pytest

import permits_core.circuit_breaker.breaker as breaker_mod
import permits_core.kvstore.fallback as fallback_mod
from tests.permits_core.support.fakes import FakeClock, FakeLogger, FakeRedis


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Provide a fresh Redis client test double per test."""
    return FakeRedis()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker and fallback-store time on a controllable clock."""
    fake_clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake_clock.now)
    monkeypatch.setattr(fallback_mod, "_now_ms", fake_clock.now_ms)
    return fake_clock
