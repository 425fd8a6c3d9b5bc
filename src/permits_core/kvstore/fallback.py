"""In-memory stand-in for the Redis operation surface.

Used when the backing store is disabled by configuration, typically in local
development and tests. Method names and return shapes follow
``redis.asyncio.Redis`` so a ``FallbackStore`` can sit behind
``ResilientClient`` in place of a real connection.

Expiry is lazy: an expired key is purged only when that key is next touched.
String and set keys share one keyspace; type mismatches and non-integer
counters raise ``redis.exceptions.ResponseError`` as a Redis server would.
"""

from __future__ import annotations

import fnmatch
import math
import time

from redis import exceptions as redis_exceptions

from permits_core.concurrency import GilAwareLock
from permits_core.logging import StructuredLogger, get_logger, log_warning

_EX_MODE = "EX"
_WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"
_NOT_AN_INTEGER = "value is not an integer or out of range"


def _now_ms() -> float:
    return time.time() * 1000.0


class FallbackStore:
    """Process-local key/value store with Redis-like string semantics."""

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        self._data: dict[str, str] = {}
        self._expirations: dict[str, float] = {}
        self._sets: dict[str, set[str]] = {}
        self._guard = GilAwareLock()
        self._logger = get_logger(__name__) if logger is None else logger
        self._warning_logged = False

    def _warn_once(self) -> None:
        if self._warning_logged:
            return
        self._warning_logged = True
        log_warning(
            self._logger,
            "kvstore.fallback_store_active",
            detail="Redis is not configured; using a process-local in-memory store",
        )

    def _purge_if_expired(self, key: str) -> None:
        expiry = self._expirations.get(key)
        if expiry is not None and _now_ms() >= expiry:
            self._data.pop(key, None)
            self._sets.pop(key, None)
            self._expirations.pop(key, None)

    def _contains(self, key: str) -> bool:
        return key in self._data or key in self._sets

    async def get(self, key: str) -> str | None:
        """Return the stored string for ``key`` or ``None``."""
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            return self._data.get(key)

    async def set(
        self,
        key: str,
        value: str | int | float,
        mode: str | None = None,
        ttl_seconds: int | None = None,
        *,
        ex: int | None = None,
    ) -> str:
        """Store ``value``; ``mode="EX"`` or ``ex=`` also sets an expiry.

        A plain set drops any previous expiry, as Redis ``SET`` does.
        """
        self._warn_once()
        if mode is not None and mode.upper() == _EX_MODE and ttl_seconds is not None:
            ex = ttl_seconds
        with self._guard:
            self._sets.pop(key, None)
            self._data[key] = str(value)
            if ex is not None:
                self._expirations[key] = _now_ms() + ex * 1000.0
            else:
                self._expirations.pop(key, None)
        return "OK"

    async def setex(self, key: str, seconds: int, value: str | int | float) -> str:
        """Store ``value`` with an expiry of ``seconds``."""
        return await self.set(key, value, ex=seconds)

    async def incr(self, key: str) -> int:
        """Increment the integer stored at ``key``; absent counts as 0.

        Raises:
            redis.exceptions.ResponseError: If ``key`` holds a set or a value
                that is not an integer string.
        """
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            if key in self._sets:
                raise redis_exceptions.ResponseError(_WRONGTYPE)
            current = self._data.get(key)
            try:
                new_value = (int(current) if current is not None else 0) + 1
            except ValueError as error:
                raise redis_exceptions.ResponseError(_NOT_AN_INTEGER) from error
            self._data[key] = str(new_value)
            return new_value

    async def expire(self, key: str, seconds: int) -> int:
        """Set or overwrite the expiry of an existing key; 1 if it existed."""
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            if not self._contains(key):
                return 0
            self._expirations[key] = _now_ms() + seconds * 1000.0
            return 1

    async def ttl(self, key: str) -> int:
        """Return whole seconds left (rounded up), -1 without expiry, -2 absent."""
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            if not self._contains(key):
                return -2
            expiry = self._expirations.get(key)
            if expiry is None:
                return -1
            return math.ceil((expiry - _now_ms()) / 1000.0)

    async def exists(self, *keys: str) -> int:
        """Return how many of ``keys`` are present."""
        self._warn_once()
        with self._guard:
            count = 0
            for key in keys:
                self._purge_if_expired(key)
                if self._contains(key):
                    count += 1
            return count

    async def delete(self, *keys: str) -> int:
        """Remove ``keys`` and their expiries; return how many existed."""
        self._warn_once()
        with self._guard:
            removed = 0
            for key in keys:
                self._purge_if_expired(key)
                if self._data.pop(key, None) is not None:
                    removed += 1
                elif self._sets.pop(key, None) is not None:
                    removed += 1
                self._expirations.pop(key, None)
            return removed

    async def keys(self, pattern: str = "*") -> list[str]:
        """Return live keys matching a Redis-style glob ``pattern``."""
        self._warn_once()
        with self._guard:
            for key in list(self._expirations):
                self._purge_if_expired(key)
            names = list(self._data) + [key for key in self._sets if key not in self._data]
            return [key for key in names if fnmatch.fnmatchcase(key, pattern)]

    async def scan(
        self,
        cursor: int = 0,
        match: str | None = None,
        count: int | None = None,
    ) -> tuple[int, list[str]]:
        """Page through ``keys(match)``; a returned cursor of 0 ends the scan."""
        matching = await self.keys(match or "*")
        page_size = 10 if count is None else max(count, 1)
        start = max(cursor, 0)
        end = min(start + page_size, len(matching))
        next_cursor = 0 if end >= len(matching) else end
        return next_cursor, matching[start:end]

    async def sadd(self, key: str, *members: str | int | float) -> int:
        """Add ``members`` to the set at ``key``; return how many were new."""
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            if key in self._data:
                raise redis_exceptions.ResponseError(_WRONGTYPE)
            current = self._sets.setdefault(key, set())
            before = len(current)
            current.update(str(member) for member in members)
            return len(current) - before

    async def smembers(self, key: str) -> set[str]:
        """Return a copy of the set stored at ``key``."""
        self._warn_once()
        with self._guard:
            self._purge_if_expired(key)
            if key in self._data:
                raise redis_exceptions.ResponseError(_WRONGTYPE)
            return set(self._sets.get(key, set()))

    async def ping(self) -> str:
        """Always answer ``PONG``."""
        return "PONG"
