"""Failure classification for circuit breakers.

A classifier decides whether an exception raised by a protected operation
counts against the breaker's failure budget. Uncounted failures still reach
the caller; they just leave breaker state alone.
"""

from collections.abc import Callable

FailureClassifier = Callable[[Exception], bool]


def count_all_failures(exc: Exception) -> bool:
    """Count every exception as a failure."""
    _ = exc
    return True


def exclude_exceptions(*excluded: type[Exception]) -> FailureClassifier:
    """Build a classifier that ignores instances of ``excluded`` types.

    Args:
        *excluded: Exception types that must not count as failures, such as a
            well-formed "not found" response.

    Raises:
        ValueError: If no exception types are provided.
    """
    if not excluded:
        raise ValueError("exclude_exceptions requires at least one exception type")

    def _classify(exc: Exception) -> bool:
        return not isinstance(exc, excluded)

    return _classify
