"""Circuit breaker and backoff for chain RPC calls."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-chain breaker: opens after ``failure_threshold`` exhausted calls.

    A call counts as one failure only when every endpoint of the chain failed.
    While open, calls are refused until ``recovery_timeout`` has passed; the
    next call is then let through as a trial (half-open). A successful trial
    closes the breaker, a failed one opens it again.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow(self) -> bool:
        if self._state is CircuitState.OPEN:
            if self._clock() - self._opened_at < self.recovery_timeout:
                return False
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit for %s is half-open", self.name)
        return True

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit for %s closed", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if (
            self._state is CircuitState.HALF_OPEN
            or self._failure_count >= self.failure_threshold
        ):
            if self._state is not CircuitState.OPEN:
                logger.error(
                    "Circuit for %s opened after %d failures",
                    self.name,
                    self._failure_count,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()


def backoff_delay(attempt: int, *, base: float = 1.0, cap: float = 5.0) -> float:
    """Exponential delay before retry ``attempt`` (0-based), capped."""
    return min(base * (2**attempt), cap)
