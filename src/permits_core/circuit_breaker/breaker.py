"""Core circuit breaker implementation."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeVar

from permits_core.circuit_breaker.classifier import (
    FailureClassifier,
    count_all_failures,
)
from permits_core.circuit_breaker.exceptions import CircuitOpenError
from permits_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from permits_core.concurrency import GilAwareLock
from permits_core.logging import (
    StructuredLogger,
    get_logger,
    log_debug,
    log_info,
    log_warning,
)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(since: datetime, now: datetime) -> float:
    return max((now - since).total_seconds() * 1000.0, 0.0)


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Counted failures required while ``CLOSED`` before
            opening.
        reset_timeout_ms: Milliseconds to stay ``OPEN`` before allowing a
            half-open probe.
        half_open_success_threshold: Successful probes required while
            ``HALF_OPEN`` before closing.
        failure_classifier: Predicate deciding which exceptions count as
            failures.
    """

    failure_threshold: int = 5
    reset_timeout_ms: float = 30_000
    half_open_success_threshold: int = 2
    failure_classifier: FailureClassifier = count_all_failures

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")
        if self.half_open_success_threshold < 1:
            raise ValueError("half_open_success_threshold must be >= 1")


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    ``OPEN -> HALF_OPEN`` happens lazily: the first ``execute()`` after the
    reset timeout becomes the probe. Every call made while ``HALF_OPEN`` is
    let through, and any counted failure among them re-opens the circuit.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Breaker name used in logs and snapshots.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            logger: Structured logger. Defaults to this module's structlog
                logger.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._logger = get_logger(__name__) if logger is None else logger
        self._guard = GilAwareLock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._last_failure_at: datetime | None = None
        self._last_state_change_at = _utcnow()

        log_info(
            self._logger,
            "circuit_breaker.initialized",
            breaker=self.name,
            failure_threshold=self.config.failure_threshold,
            reset_timeout_ms=self.config.reset_timeout_ms,
            half_open_success_threshold=self.config.half_open_success_threshold,
        )

    @property
    def state(self) -> CircuitState:
        """Return the current breaker state."""
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Invoke a no-argument async callable under breaker protection.

        Args:
            operation: Dangerous async callable to execute.

        Returns:
            The result of ``operation`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected
                without invoking ``operation``.
            Exception: The original exception raised by ``operation``.
        """
        remaining_ms: float | None = None
        with self._guard:
            self._total_calls += 1
            if self._state == CircuitState.OPEN:
                now = _utcnow()
                elapsed = _elapsed_ms(self._last_state_change_at, now)
                if elapsed < self.config.reset_timeout_ms:
                    remaining_ms = self.config.reset_timeout_ms - elapsed
                else:
                    self._transition(CircuitState.HALF_OPEN, now)

        if remaining_ms is not None:
            log_debug(
                self._logger,
                "circuit_breaker.call_rejected",
                breaker=self.name,
                remaining_time_ms=remaining_ms,
            )
            raise CircuitOpenError(self.name, remaining_time_ms=remaining_ms)

        try:
            result = await operation()
        except Exception as exc:
            self._record_failure(exc)
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to ``CLOSED``; lifetime counters are kept."""
        with self._guard:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_state_change_at = _utcnow()
        log_info(
            self._logger,
            "circuit_breaker.reset",
            breaker=self.name,
            previous_state=previous,
        )

    def force_open(self) -> None:
        """Trip the breaker to ``OPEN`` and restart the reset timeout window."""
        with self._guard:
            self._transition(CircuitState.OPEN, _utcnow())

    def get_state(self) -> BreakerSnapshot:
        """Return an immutable snapshot of breaker counters and timings."""
        with self._guard:
            now = _utcnow()
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_threshold=self.config.failure_threshold,
                reset_timeout_ms=self.config.reset_timeout_ms,
                half_open_success_threshold=self.config.half_open_success_threshold,
                failure_count=self._failure_count,
                success_count=self._success_count,
                consecutive_failures=self._consecutive_failures,
                consecutive_successes=self._consecutive_successes,
                total_calls=self._total_calls,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                last_failure_at=self._last_failure_at,
                last_state_change_at=self._last_state_change_at,
                time_in_current_state_ms=_elapsed_ms(self._last_state_change_at, now),
            )

    def _record_success(self) -> None:
        with self._guard:
            self._total_successes += 1
            self._consecutive_successes += 1
            self._consecutive_failures = 0
            if self._state != CircuitState.HALF_OPEN:
                return
            self._success_count += 1
            if self._success_count >= self.config.half_open_success_threshold:
                self._transition(CircuitState.CLOSED, _utcnow())

    def _record_failure(self, exc: Exception) -> None:
        with self._guard:
            now = _utcnow()
            self._total_failures += 1
            self._consecutive_failures += 1
            self._consecutive_successes = 0
            self._last_failure_at = now

            if not self.config.failure_classifier(exc):
                log_debug(
                    self._logger,
                    "circuit_breaker.failure_ignored",
                    breaker=self.name,
                    error_type=exc.__class__.__name__,
                    error=str(exc),
                )
                return

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, now)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN, now)

    def _transition(self, new: CircuitState, now: datetime) -> None:
        """Move to ``new``; callers must hold ``self._guard``."""
        old = self._state
        time_in_previous_ms = _elapsed_ms(self._last_state_change_at, now)
        self._state = new
        self._last_state_change_at = now
        if new == CircuitState.HALF_OPEN:
            self._success_count = 0
        elif new == CircuitState.CLOSED:
            self._failure_count = 0

        log_warning(
            self._logger,
            f"circuit_breaker.{new.lower()}",
            breaker=self.name,
            previous_state=old,
            state=new,
            time_in_previous_state_ms=time_in_previous_ms,
            failure_count=self._failure_count,
            success_count=self._success_count,
            consecutive_failures=self._consecutive_failures,
            total_failures=self._total_failures,
        )
