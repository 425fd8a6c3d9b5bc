"""Locking that only engages on free-threaded interpreters."""

from __future__ import annotations

import sys
import threading
from types import TracebackType


class GilAwareLock:
    """Guard in-process state mutations on free-threaded interpreters.

    Breaker counters and fallback-store maps are only mutated between awaits,
    so under the GIL the event loop already serializes them and this lock is a
    no-op. Without the GIL a ``threading.Lock`` is taken instead.
    """

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._thread_lock: threading.Lock | None = None
        if not self._gil_enabled:
            self._thread_lock = threading.Lock()

    @property
    def uses_thread_lock(self) -> bool:
        """Return whether a real thread lock backs this guard."""
        return self._thread_lock is not None

    def __enter__(self) -> GilAwareLock:
        if self._thread_lock is not None:
            self._thread_lock.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._thread_lock is not None:
            self._thread_lock.release()
