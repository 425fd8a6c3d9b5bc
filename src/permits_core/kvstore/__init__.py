"""Fault-isolated access to the Redis key/value store.

``ResilientClient`` fronts either a ``redis.asyncio.Redis`` connection, an
in-memory ``FallbackStore``, or nothing at all, and never raises for store
outages. Use ``build_resilient_client``/``open_resilient_client`` to create
the one instance a process needs.
"""

from permits_core.kvstore.client import (
    DEFAULT_RECONNECT_POLICY,
    HealthStatus,
    KeyValueBackend,
    ResilientClient,
)
from permits_core.kvstore.errors import (
    counts_toward_breaker,
    is_connection_failure,
    requires_reconnect,
)
from permits_core.kvstore.factory import build_resilient_client, open_resilient_client
from permits_core.kvstore.fallback import FallbackStore
from permits_core.kvstore.monitor import ConnectionMonitor, build_connection_monitor

__all__ = [
    "DEFAULT_RECONNECT_POLICY",
    "ConnectionMonitor",
    "FallbackStore",
    "HealthStatus",
    "KeyValueBackend",
    "ResilientClient",
    "build_connection_monitor",
    "build_resilient_client",
    "counts_toward_breaker",
    "is_connection_failure",
    "open_resilient_client",
    "requires_reconnect",
]
