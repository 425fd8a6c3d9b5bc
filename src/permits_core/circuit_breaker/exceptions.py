"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open (``CircuitOpenError``).
  - The protected operation's own failure, which is re-raised unchanged.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        remaining_time_ms: Milliseconds until a half-open probe may be attempted.
    """

    def __init__(self, breaker_name: str, remaining_time_ms: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            remaining_time_ms: Milliseconds until the next probe window opens.
        """
        self.breaker_name = breaker_name
        self.remaining_time_ms = remaining_time_ms
        super().__init__(
            f"circuit_open: {breaker_name} remaining_time_ms={remaining_time_ms:g}"
        )
