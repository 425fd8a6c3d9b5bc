"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State lives on the ``CircuitBreaker`` instance; nothing is shared across
    instances or processes.
  - ``OPEN -> HALF_OPEN`` is lazy: it happens on the first ``execute()`` after
    the reset timeout, and that call becomes the probe.
  - ``HALF_OPEN`` closes after ``half_open_success_threshold`` successes and
    re-opens on any single counted failure.
  - Exceptions rejected by the failure classifier still propagate to the
    caller but leave failure counts and state untouched.
"""

from permits_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from permits_core.circuit_breaker.classifier import (
    FailureClassifier,
    count_all_failures,
    exclude_exceptions,
)
from permits_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from permits_core.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "FailureClassifier",
    "count_all_failures",
    "exclude_exceptions",
]
