"""Construction of the process-wide ``ResilientClient``.

Build one client at startup and hand it to the rate limiters, caches and
session stores that need it; nothing here caches a global instance.
"""

from __future__ import annotations

import redis.asyncio as redis_asyncio

from permits_core.circuit_breaker import FailureClassifier
from permits_core.kvstore.client import ResilientClient
from permits_core.kvstore.errors import counts_toward_breaker
from permits_core.kvstore.fallback import FallbackStore
from permits_core.logging import (
    StructuredLogger,
    get_logger,
    log_error,
    log_info,
)
from permits_core.settings import KeyValueSettings


def build_resilient_client(
    settings: KeyValueSettings,
    *,
    failure_classifier: FailureClassifier = counts_toward_breaker,
    logger: StructuredLogger | None = None,
) -> ResilientClient:
    """Select the backing store from ``settings`` and wrap it.

    - ``enabled``: a ``redis.asyncio.Redis`` client, disconnected until
      ``connect()`` succeeds.
    - disabled in production: no backing client; every call is degraded.
    - disabled elsewhere: a connected in-memory ``FallbackStore``.
    """
    resolved_logger = get_logger(__name__) if logger is None else logger
    common = {
        "breaker_config": settings.breaker_config(failure_classifier),
        "key_prefix": settings.key_prefix,
        "failure_log_every": settings.failure_log_every,
        "reconnect_policy": settings.reconnect_policy(),
        "logger": resolved_logger,
    }

    if settings.enabled:
        log_info(
            resolved_logger,
            "kvstore.backend_selected",
            backend="redis",
            host=settings.host,
            port=settings.port,
            tls=settings.tls,
            environment=settings.environment,
        )
        backend = redis_asyncio.Redis(**settings.redis_client_options())
        return ResilientClient(backend, name="redis", **common)

    if settings.environment == "production":
        log_error(
            resolved_logger,
            "kvstore.backend_unavailable",
            detail="Redis disabled in production; running fully degraded",
            environment=settings.environment,
        )
        return ResilientClient(None, name="redis", **common)

    log_info(
        resolved_logger,
        "kvstore.backend_selected",
        backend="memory",
        environment=settings.environment,
    )
    return ResilientClient(
        FallbackStore(logger=resolved_logger),
        name="memory",
        connected=True,
        **common,
    )


async def open_resilient_client(
    settings: KeyValueSettings,
    *,
    failure_classifier: FailureClassifier = counts_toward_breaker,
    logger: StructuredLogger | None = None,
) -> ResilientClient:
    """Build a client and attempt the initial connection.

    A failed connection is not fatal: the client is returned disconnected
    and serves degraded defaults until a later ``check_connection()``.
    """
    client = build_resilient_client(
        settings,
        failure_classifier=failure_classifier,
        logger=logger,
    )
    if client.is_connected:
        return client
    await client.connect()
    return client
