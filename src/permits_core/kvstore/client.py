"""Resilient facade over the Redis client.

Every call goes through a private circuit breaker. When there is no backing
client, the connection is marked down, the breaker is open, or the call
fails, the operation returns its degraded default instead of raising:

=====================  ==============================
Operation              Degraded default
=====================  ==============================
get                    ``None``
exists                 ``0``
ttl                    ``-2``
increment              ``1``
set / set_with_expiry  ``"OK"`` (nothing written)
expire                 ``1`` (nothing written)
delete                 ``len(keys)`` (nothing deleted)
ping                   ``"PONG"``
keys / scan            ``[]`` / ``(0, [])``
smembers / sadd        ``set()`` / new-member count
=====================  ==============================

Degraded writes are indistinguishable from real ones at the call site, so
callers must only rely on this client for idempotent, best-effort state.
``HealthStatus.degraded_calls`` and the error log are the degradation signal.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

from tenacity import RetryCallState
from tenacity.retry import retry_if_exception_type

from permits_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from permits_core.kvstore.errors import requires_reconnect
from permits_core.logging import (
    StructuredLogger,
    get_logger,
    log_error,
    log_info,
    log_warning,
    should_log_occurrence,
)
from permits_core.retry import RetryBackoffPolicy, build_exponential_jitter_retrying

T = TypeVar("T")

_EX_MODE = "EX"
DEFAULT_RECONNECT_POLICY = RetryBackoffPolicy(
    attempts=10,
    min_seconds=1.0,
    max_seconds=5.0,
)


class KeyValueBackend(Protocol):
    """Subset of ``redis.asyncio.Redis`` used by ``ResilientClient``."""

    async def get(self, key: str) -> Any:
        """Return the value at ``key``."""

    async def set(self, key: str, value: Any, *, ex: int | None = None) -> Any:
        """Store ``value`` at ``key`` with an optional expiry in seconds."""

    async def setex(self, key: str, seconds: int, value: Any) -> Any:
        """Store ``value`` at ``key`` with an expiry in seconds."""

    async def incr(self, key: str) -> Any:
        """Increment the integer at ``key``."""

    async def expire(self, key: str, seconds: int) -> Any:
        """Set the expiry of ``key``."""

    async def ttl(self, key: str) -> Any:
        """Return the remaining lifetime of ``key``."""

    async def exists(self, *keys: str) -> Any:
        """Count how many of ``keys`` exist."""

    async def delete(self, *keys: str) -> Any:
        """Delete ``keys``."""

    async def keys(self, pattern: str = "*") -> Any:
        """Return keys matching ``pattern``."""

    async def scan(
        self, cursor: int = 0, match: str | None = None, count: int | None = None
    ) -> Any:
        """Return one page of a key scan."""

    async def sadd(self, key: str, *members: Any) -> Any:
        """Add ``members`` to the set at ``key``."""

    async def smembers(self, key: str) -> Any:
        """Return the members of the set at ``key``."""

    async def ping(self) -> Any:
        """Check connectivity."""


@dataclass(frozen=True)
class HealthStatus:
    """Operational view of a ``ResilientClient`` for dashboards.

    Attributes:
        healthy: A backing client exists, is connected, and the breaker is
            ``CLOSED``.
        state: Current breaker state.
        last_error: Message of the last connection or command error, if any.
        reconnect_attempts: Retries made by the current or last ``connect()``.
        failure_count: Consecutive failed commands since the last success.
        last_failure_at: Timestamp of the last failed command, if any.
        degraded_calls: Calls answered with a degraded default.
    """

    healthy: bool
    state: CircuitState
    last_error: str | None
    reconnect_attempts: int
    failure_count: int
    last_failure_at: datetime | None
    degraded_calls: int


class ResilientClient:
    """Redis facade that never raises for backing-store outages."""

    def __init__(
        self,
        client: KeyValueBackend | None,
        *,
        name: str = "redis",
        breaker_config: CircuitBreakerConfig | None = None,
        key_prefix: str = "",
        failure_log_every: int = 10,
        reconnect_policy: RetryBackoffPolicy | None = None,
        connected: bool = False,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Wrap ``client`` with breaker protection and degraded defaults.

        Args:
            client: Backing client, or ``None`` when no store is reachable at
                all; every call then returns its degraded default.
            name: Name for the breaker and log events.
            breaker_config: Breaker configuration.
            key_prefix: Prefix added to every key and key pattern.
            failure_log_every: Log every Nth consecutive failure after the
                first.
            reconnect_policy: Retry policy used by ``connect()``.
            connected: Initial connection state. Real clients start
                disconnected until ``connect()`` succeeds.
            sleep: Sleep used between reconnect attempts.
            logger: Structured logger.
        """
        if failure_log_every < 1:
            raise ValueError("failure_log_every must be >= 1")
        self.name = name
        self._client = client
        self._logger = get_logger(__name__) if logger is None else logger
        self._breaker = CircuitBreaker(
            name,
            config=breaker_config,
            logger=self._logger,
        )
        self._key_prefix = key_prefix
        self._failure_log_every = failure_log_every
        self._reconnect_policy = (
            DEFAULT_RECONNECT_POLICY if reconnect_policy is None else reconnect_policy
        )
        self._sleep = sleep
        self._connected = connected and client is not None
        self._reconnect_required = False
        self._reconnect_attempts = 0
        self._last_error: str | None = None
        self._failure_count = 0
        self._last_failure_at: datetime | None = None
        self._degraded_calls = 0
        self._unavailable_count = 0

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Return the breaker guarding backing calls, for admin resets."""
        return self._breaker

    @property
    def is_connected(self) -> bool:
        """Return whether backing calls are currently attempted."""
        return self._client is not None and self._connected

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def _execute(
        self,
        command: str,
        operation: Callable[[KeyValueBackend], Awaitable[T]],
        default: T,
    ) -> T:
        client = self._client
        if client is None or not self._connected:
            self._degraded_calls += 1
            self._unavailable_count += 1
            if should_log_occurrence(self._unavailable_count, self._failure_log_every):
                log_warning(
                    self._logger,
                    "kvstore.unavailable",
                    client=self.name,
                    command=command,
                    skipped=self._unavailable_count,
                )
            return default

        try:
            result = await self._breaker.execute(lambda: operation(client))
        except CircuitOpenError:
            self._degraded_calls += 1
            return default
        except Exception as exc:
            self._degraded_calls += 1
            self._record_failure(command, exc)
            return default

        self._failure_count = 0
        self._last_failure_at = None
        return result

    def _record_failure(self, command: str, exc: Exception) -> None:
        self._failure_count += 1
        self._last_failure_at = datetime.now(UTC)
        self._last_error = str(exc) or exc.__class__.__name__
        if should_log_occurrence(self._failure_count, self._failure_log_every):
            log_error(
                self._logger,
                "kvstore.command_failed",
                client=self.name,
                command=command,
                failure_count=self._failure_count,
                error_type=exc.__class__.__name__,
                error=self._last_error,
            )
        if requires_reconnect(exc):
            self._reconnect_required = True
            self._mark_disconnected(exc)

    def _mark_connected(self) -> None:
        was_connected = self._connected
        self._connected = True
        self._reconnect_attempts = 0
        self._unavailable_count = 0
        if not was_connected:
            log_info(self._logger, "kvstore.connected", client=self.name)

    def _mark_disconnected(self, exc: BaseException) -> None:
        was_connected = self._connected
        self._connected = False
        self._last_error = str(exc) or exc.__class__.__name__
        if was_connected:
            log_warning(
                self._logger,
                "kvstore.disconnected",
                client=self.name,
                error_type=exc.__class__.__name__,
                error=self._last_error,
                reconnect_required=self._reconnect_required,
            )

    async def _probe_connection(self) -> None:
        client = self._client
        if client is None:
            raise ConnectionError(f"{self.name}: no backing client configured")
        if self._reconnect_required:
            pool = getattr(client, "connection_pool", None)
            if pool is not None:
                await pool.disconnect()
            self._reconnect_required = False
        await client.ping()

    def _on_reconnect_attempt(self, retry_state: RetryCallState) -> None:
        self._reconnect_attempts += 1
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if error is not None:
            self._last_error = str(error) or error.__class__.__name__
        next_action = retry_state.next_action
        log_warning(
            self._logger,
            "kvstore.reconnecting",
            client=self.name,
            attempt=self._reconnect_attempts,
            delay_seconds=next_action.sleep if next_action is not None else None,
            error=self._last_error,
        )

    async def connect(self) -> bool:
        """Ping the backing client with retries and mark it connected.

        Returns:
            ``True`` once a ping succeeds, ``False`` if there is no backing
            client or every attempt failed.
        """
        if self._client is None:
            log_warning(self._logger, "kvstore.no_backing_client", client=self.name)
            return False

        self._reconnect_attempts = 0
        retrying = build_exponential_jitter_retrying(
            retry=retry_if_exception_type(Exception),
            policy=self._reconnect_policy,
            sleep=self._sleep,
            before_sleep=self._on_reconnect_attempt,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._probe_connection()
        except Exception as exc:
            self._mark_disconnected(exc)
            log_error(
                self._logger,
                "kvstore.connect_failed",
                client=self.name,
                reconnect_attempts=self._reconnect_attempts,
                error_type=exc.__class__.__name__,
                error=self._last_error,
            )
            return False

        self._mark_connected()
        return True

    async def check_connection(self) -> bool:
        """Ping once and update the connection flag accordingly."""
        if self._client is None:
            return False
        try:
            await self._probe_connection()
        except Exception as exc:
            if requires_reconnect(exc):
                self._reconnect_required = True
            self._mark_disconnected(exc)
            return False
        self._mark_connected()
        return True

    async def aclose(self) -> None:
        """Close the backing client when it supports closing."""
        client = self._client
        if client is None:
            return
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
        self._connected = False

    async def get(self, key: str) -> str | None:
        """Return the value at ``key``; ``None`` when absent or degraded."""
        return await self._execute(
            "get",
            lambda client: client.get(self._key(key)),
            None,
        )

    async def set(
        self,
        key: str,
        value: str | int | float,
        mode: str | None = None,
        ttl_seconds: int | None = None,
    ) -> str:
        """Store ``value`` at ``key``; ``mode="EX"`` adds a ttl in seconds.

        Raises:
            ValueError: If ``mode`` is not ``"EX"`` or lacks ``ttl_seconds``.
        """
        ex: int | None = None
        if mode is not None:
            if mode.upper() != _EX_MODE:
                raise ValueError("mode must be 'EX' when provided")
            if ttl_seconds is None:
                raise ValueError("ttl_seconds is required when mode is 'EX'")
            ex = ttl_seconds

        async def _set(client: KeyValueBackend) -> str:
            await client.set(self._key(key), value, ex=ex)
            return "OK"

        return await self._execute("set", _set, "OK")

    async def set_with_expiry(
        self, key: str, value: str | int | float, ttl_seconds: int
    ) -> str:
        """Store ``value`` at ``key`` expiring after ``ttl_seconds``."""

        async def _setex(client: KeyValueBackend) -> str:
            await client.setex(self._key(key), ttl_seconds, value)
            return "OK"

        return await self._execute("setex", _setex, "OK")

    async def increment(self, key: str) -> int:
        """Increment the counter at ``key``; ``1`` when degraded."""

        async def _incr(client: KeyValueBackend) -> int:
            return int(await client.incr(self._key(key)))

        return await self._execute("incr", _incr, 1)

    async def expire(self, key: str, ttl_seconds: int) -> int:
        """Set the ttl of ``key``; 1 when it existed (or when degraded)."""

        async def _expire(client: KeyValueBackend) -> int:
            return int(await client.expire(self._key(key), ttl_seconds))

        return await self._execute("expire", _expire, 1)

    async def ttl(self, key: str) -> int:
        """Return seconds left, -1 without expiry, -2 when absent or degraded."""

        async def _ttl(client: KeyValueBackend) -> int:
            return int(await client.ttl(self._key(key)))

        return await self._execute("ttl", _ttl, -2)

    async def exists(self, key: str) -> int:
        """Return 1 when ``key`` exists, else 0."""

        async def _exists(client: KeyValueBackend) -> int:
            return 1 if int(await client.exists(self._key(key))) > 0 else 0

        return await self._execute("exists", _exists, 0)

    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` and return how many were removed."""
        if not keys:
            return 0

        async def _delete(client: KeyValueBackend) -> int:
            return int(await client.delete(*(self._key(key) for key in keys)))

        return await self._execute("del", _delete, len(keys))

    async def keys(self, pattern: str = "*") -> list[str]:
        """Return keys matching ``pattern`` (prefix included in results)."""

        async def _keys(client: KeyValueBackend) -> list[str]:
            return list(await client.keys(self._key(pattern)))

        return await self._execute("keys", _keys, [])

    async def scan(
        self,
        cursor: int = 0,
        match: str | None = None,
        count: int | None = None,
    ) -> tuple[int, list[str]]:
        """Return one ``(next_cursor, keys)`` page of a key scan."""

        async def _scan(client: KeyValueBackend) -> tuple[int, list[str]]:
            next_cursor, found = await client.scan(
                cursor=cursor,
                match=self._key(match or "*"),
                count=count,
            )
            return int(next_cursor), list(found)

        return await self._execute("scan", _scan, (0, []))

    async def sadd(self, key: str, *members: str | int | float) -> int:
        """Add ``members`` to the set at ``key``; return how many were new."""
        if not members:
            return 0

        async def _sadd(client: KeyValueBackend) -> int:
            return int(await client.sadd(self._key(key), *members))

        return await self._execute(
            "sadd", _sadd, len({str(member) for member in members})
        )

    async def smembers(self, key: str) -> set[str]:
        """Return the members of the set at ``key``."""

        async def _smembers(client: KeyValueBackend) -> set[str]:
            return set(await client.smembers(self._key(key)))

        return await self._execute("smembers", _smembers, set())

    async def ping(self) -> str:
        """Ping the backing store; ``"PONG"`` whether or not it answered."""

        async def _ping(client: KeyValueBackend) -> str:
            await client.ping()
            return "PONG"

        return await self._execute("ping", _ping, "PONG")

    def health_status(self) -> HealthStatus:
        """Combine connection flags and breaker state for dashboards."""
        state = self._breaker.state
        return HealthStatus(
            healthy=self.is_connected and state == CircuitState.CLOSED,
            state=state,
            last_error=self._last_error,
            reconnect_attempts=self._reconnect_attempts,
            failure_count=self._failure_count,
            last_failure_at=self._last_failure_at,
            degraded_calls=self._degraded_calls,
        )
