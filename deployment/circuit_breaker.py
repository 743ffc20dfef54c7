"""
Circuit breaker for oracle calls.

countTokens and generateContent calls go through a breaker so a
degraded oracle fails fast instead of stalling every count on a timeout.
An open countTokens breaker degrades token counts through the selector's failure
policy; an open generation breaker surfaces to the caller.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from shared.errors import CircuitOpenError

logger = logging.getLogger(__name__)

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "get_generation_breaker",
    "get_token_count_breaker",
    "reset_breakers",
]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED passes calls through; failure_threshold consecutive failures
    move it to OPEN, which rejects calls until reset_timeout has elapsed;
    HALF_OPEN then admits up to half_open_max_calls trial calls, and that
    many successes close the circuit again.

    Usage:
        breaker = CircuitBreaker(name="countTokens", failure_threshold=5)
        total = breaker.call(client.count_tokens, request)
    """

    name: str = "oracle"
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_max_calls: int = 2
    clock: Callable[[], float] = time.monotonic

    state: CircuitState = field(default=CircuitState.CLOSED)
    failures: int = field(default=0)
    successes: int = field(default=0)
    opened_at: Optional[float] = field(default=None)
    half_open_calls: int = field(default=0)

    def _allow(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and self.clock() - self.opened_at >= self.reset_timeout:
                logger.info(f"Circuit '{self.name}' HALF_OPEN: probing recovery")
                self.state = CircuitState.HALF_OPEN
                self.half_open_calls = 0
                self.successes = 0
                return True
            return False

        return self.half_open_calls < self.half_open_max_calls

    def _open(self) -> None:
        logger.warning(f"Circuit '{self.name}' OPEN after {self.failures} consecutive failures")
        self.state = CircuitState.OPEN
        self.opened_at = self.clock()

    def _record_success(self) -> None:
        self.failures = 0
        if self.state == CircuitState.HALF_OPEN:
            self.successes += 1
            if self.successes >= self.half_open_max_calls:
                logger.info(f"Circuit '{self.name}' CLOSED: oracle recovered")
                self.state = CircuitState.CLOSED
                self.successes = 0
                self.half_open_calls = 0

    def _record_failure(self) -> None:
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            self._open()

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """
        Run fn under breaker protection.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Exception: Whatever fn raised
        """
        if not self._allow():
            remaining = self.reset_timeout - (self.clock() - (self.opened_at or 0.0))
            raise CircuitOpenError(
                f"Circuit '{self.name}' is {self.state.value}; retry in {max(remaining, 0):.0f}s"
            )

        if self.state == CircuitState.HALF_OPEN:
            self.half_open_calls += 1

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "half_open_calls": self.half_open_calls,
        }


# Process-wide breakers, one per oracle
_token_count_breaker: Optional[CircuitBreaker] = None
_generation_breaker: Optional[CircuitBreaker] = None


def get_token_count_breaker() -> CircuitBreaker:
    """Breaker for countTokens calls."""
    global _token_count_breaker
    if _token_count_breaker is None:
        _token_count_breaker = CircuitBreaker(
            name="countTokens", failure_threshold=5, reset_timeout=30.0, half_open_max_calls=2
        )
    return _token_count_breaker


def get_generation_breaker() -> CircuitBreaker:
    """Breaker for answer generation."""
    global _generation_breaker
    if _generation_breaker is None:
        _generation_breaker = CircuitBreaker(
            name="generateContent", failure_threshold=3, reset_timeout=30.0, half_open_max_calls=2
        )
    return _generation_breaker


def reset_breakers() -> None:
    """Drop the process-wide breakers (tests, config reloads)."""
    global _token_count_breaker, _generation_breaker
    _token_count_breaker = None
    _generation_breaker = None
