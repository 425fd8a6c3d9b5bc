"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_threshold: Counted failures while ``CLOSED`` before opening.
        reset_timeout_ms: Milliseconds spent ``OPEN`` before a probe.
        half_open_success_threshold: Probe successes needed to close.
        failure_count: Counted failures since the breaker last closed.
        success_count: Successes since the breaker last went half-open.
        consecutive_failures: Failures since the last success.
        consecutive_successes: Successes since the last failure.
        total_calls: Every ``execute()`` call, fast-failed ones included.
        total_failures: Every failed operation, classified or not.
        total_successes: Every successful operation.
        last_failure_at: Timestamp of the last failed operation, if any.
        last_state_change_at: Timestamp of the last state transition.
        time_in_current_state_ms: Milliseconds since ``last_state_change_at``.
    """

    name: str
    state: CircuitState
    failure_threshold: int
    reset_timeout_ms: float
    half_open_success_threshold: int
    failure_count: int
    success_count: int
    consecutive_failures: int
    consecutive_successes: int
    total_calls: int
    total_failures: int
    total_successes: int
    last_failure_at: datetime | None
    last_state_change_at: datetime
    time_in_current_state_ms: float
