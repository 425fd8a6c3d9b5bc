"""Background health checks that restore a dropped backing-store connection."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress

from permits_core.kvstore.client import ResilientClient
from permits_core.retry import build_interruptible_sleep
from permits_core.settings import KeyValueSettings


async def run_connection_loop(
    *,
    check_once: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
    interval_seconds: float,
) -> None:
    """Run periodic connection checks until shutdown is requested."""
    interval = max(interval_seconds, 0.01)
    sleep = build_interruptible_sleep(stop_event)
    while not stop_event.is_set():
        await check_once()
        await sleep(interval)


class ConnectionMonitor:
    """Periodically ping the backing store so a dropped connection recovers.

    ``ResilientClient`` stops calling a store it considers disconnected; this
    monitor is what flips it back once pings succeed again.
    """

    def __init__(
        self,
        *,
        client: ResilientClient,
        interval_seconds: float,
    ) -> None:
        """Initialize monitor state and polling configuration.

        Args:
            client: Client whose connection flag is maintained.
            interval_seconds: Seconds between connection checks.
        """
        self._client = client
        self._interval_seconds = max(interval_seconds, 0.01)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Return whether the background task is active."""
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Run one connection check."""
        return await self._client.check_connection()

    async def _background_loop(self) -> None:
        await run_connection_loop(
            check_once=self.check_once,
            stop_event=self._stop_event,
            interval_seconds=self._interval_seconds,
        )

    async def start(self) -> None:
        """Start background connection checks if not already running."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._background_loop(),
            name=f"kvstore-monitor:{self._client.name}",
        )

    async def stop(self) -> None:
        """Stop background checks and await task completion."""
        self._stop_event.set()
        task = self._task
        if task is None:
            return
        grace_seconds = self._interval_seconds + 5.0
        try:
            await asyncio.wait_for(task, timeout=grace_seconds)
        except TimeoutError:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._task = None


def build_connection_monitor(
    client: ResilientClient,
    settings: KeyValueSettings,
) -> ConnectionMonitor:
    """Build a monitor polling at ``settings.health_check_interval_ms``."""
    return ConnectionMonitor(
        client=client,
        interval_seconds=settings.health_check_interval_ms / 1000,
    )
