"""Classification of backing-store transport errors.

Structured ``redis.exceptions`` types are checked first. Message substrings
are a last-resort heuristic for errors that reach us without a specific type
(for example wrapped by a proxy); the marker list is not exhaustive.
"""

from __future__ import annotations

from redis import exceptions as redis_exceptions

RECONNECT_ERROR_MARKERS: tuple[str, ...] = ("READONLY",)

_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def requires_reconnect(exc: BaseException) -> bool:
    """Return whether ``exc`` means the current connections must be dropped.

    A ``READONLY`` reply means the node we are talking to was demoted to a
    replica during failover; reconnecting resolves the new primary.
    """
    if isinstance(exc, redis_exceptions.ReadOnlyError):
        return True
    message = str(exc)
    return any(marker in message for marker in RECONNECT_ERROR_MARKERS)


def is_connection_failure(exc: BaseException) -> bool:
    """Return whether ``exc`` signals a lost or unreachable connection."""
    return isinstance(exc, _CONNECTION_ERRORS)


def counts_toward_breaker(exc: Exception) -> bool:
    """Failure classifier for breakers guarding a Redis client.

    Command-level ``ResponseError`` replies (``WRONGTYPE``, bad arguments)
    come from a healthy server and do not count, except when they demand a
    reconnect.
    """
    if requires_reconnect(exc) or is_connection_failure(exc):
        return True
    return not isinstance(exc, redis_exceptions.ResponseError)
