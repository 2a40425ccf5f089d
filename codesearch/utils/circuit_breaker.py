"""Circuit breaker pattern for resilient service calls.

Implements the circuit breaker pattern to stop hammering an embedding
endpoint that is already failing.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Too many failures, calls fail fast without attempting operation
- HALF_OPEN: Testing if service recovered, limited calls allowed

See: https://martinfowler.com/bliki/CircuitBreaker.html
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal, TypeVar

T = TypeVar("T")


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is in OPEN state and rejects calls."""

    pass


@dataclass
class CircuitBreaker:
    """Thread-safe circuit breaker for resilient service calls.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=5, timeout_seconds=60)
        >>> try:
        >>>     result = breaker.call(lambda: expensive_api_call())
        >>> except CircuitBreakerOpen:
        >>>     # Handle gracefully, use fallback
        >>>     result = use_fallback()
    """

    failure_threshold: int = 5
    """Number of consecutive failures before opening circuit"""

    timeout_seconds: float = 60.0
    """Seconds to wait before attempting recovery (OPEN → HALF_OPEN)"""

    half_open_max_calls: int = 1
    """Max calls allowed in HALF_OPEN state before fully closing"""

    clock: Callable[[], float] = time.monotonic
    """Time source (injectable for tests)"""

    current_failures: int = field(default=0, init=False)
    state: Literal["CLOSED", "OPEN", "HALF_OPEN"] = field(default="CLOSED", init=False)
    last_failure_time: float | None = field(default=None, init=False)
    half_open_calls: int = field(default=0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def call(self, fn: Callable[[], T], *, is_failure: Callable[[Exception], bool] | None = None) -> T:
        """Execute function with circuit breaker protection.

        Args:
            fn: Callable to execute (should take no args)
            is_failure: Optional predicate deciding whether a raised exception
                counts against the breaker (defaults to every exception)

        Returns:
            Result of fn()

        Raises:
            CircuitBreakerOpen: If circuit is OPEN and not ready to retry
            Exception: Any exception raised by fn()
        """
        with self._lock:
            if self.state == "OPEN":
                if self._should_attempt_reset():
                    self.state = "HALF_OPEN"
                    self.half_open_calls = 0
                else:
                    raise CircuitBreakerOpen(
                        f"Circuit breaker is OPEN (failed {self.current_failures} times). "
                        f"Retry after {self.timeout_seconds}s timeout."
                    )

        try:
            result = fn()
        except Exception as exc:
            if is_failure is None or is_failure(exc):
                self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        with self._lock:
            if self.state == "HALF_OPEN":
                self.half_open_calls += 1
                if self.half_open_calls >= self.half_open_max_calls:
                    self.state = "CLOSED"
                    self.current_failures = 0
                    self.last_failure_time = None
            elif self.state == "CLOSED":
                self.current_failures = 0
                self.last_failure_time = None

    def _on_failure(self) -> None:
        with self._lock:
            self.current_failures += 1
            self.last_failure_time = self.clock()

            if self.state == "HALF_OPEN" or self.current_failures >= self.failure_threshold:
                self.state = "OPEN"

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True

        elapsed = self.clock() - self.last_failure_time
        return elapsed >= self.timeout_seconds

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        with self._lock:
            self.state = "CLOSED"
            self.current_failures = 0
            self.last_failure_time = None
            self.half_open_calls = 0

    def get_state(self) -> dict[str, str | int | float | None]:
        """Get current circuit breaker state for monitoring/debugging."""
        return {
            "state": self.state,
            "failures": self.current_failures,
            "last_failure": self.last_failure_time,
            "threshold": self.failure_threshold,
        }
