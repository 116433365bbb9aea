"""Circuit breaker for the extraction service.

When the model provider is down every mention would otherwise wait for
a full timeout before falling back to heuristic extraction. The breaker
counts consecutive failures and, once tripped, lets the extractor skip
straight to the fallback until a cooldown passes.

    CLOSED     calls pass through
    OPEN       calls fail fast with CircuitOpenError
    HALF_OPEN  one probe call is let through after the cooldown
"""

from __future__ import annotations

import time
from enum import Enum
from types import TracebackType
from typing import Any, Self

import structlog

from fixbot.config import settings

logger = structlog.get_logger()


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, breaker_name: str) -> None:
        super().__init__(f"Circuit breaker '{breaker_name}' is open")
        self.breaker_name = breaker_name


class CircuitBreaker:
    """Consecutive-failure breaker usable as an async context manager."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def state(self) -> BreakerState:
        if self._failures < self.failure_threshold:
            return BreakerState.CLOSED
        if time.monotonic() - self._opened_at < self.cooldown_seconds:
            return BreakerState.OPEN
        return BreakerState.HALF_OPEN

    def allow(self) -> bool:
        """Whether a call may proceed right now.

        In HALF_OPEN only one probe is admitted at a time.
        """
        state = self.state
        if state is BreakerState.CLOSED:
            return True
        if state is BreakerState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            logger.info("circuit_breaker_probe", breaker=self.name)
            return True
        return False

    def record_success(self) -> None:
        self._probe_in_flight = False
        if self._failures:
            logger.info(
                "circuit_breaker_closed",
                breaker=self.name,
                previous_failures=self._failures,
            )
        self._failures = 0

    def record_failure(self) -> None:
        self._probe_in_flight = False
        self._failures += 1
        self._opened_at = time.monotonic()
        if self._failures == self.failure_threshold:
            logger.warning(
                "circuit_breaker_opened",
                breaker=self.name,
                failures=self._failures,
                cooldown_s=self.cooldown_seconds,
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self._failures,
        }

    async def __aenter__(self) -> Self:
        if not self.allow():
            raise CircuitOpenError(self.name)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.record_success()
        else:
            self.record_failure()


_extraction_breaker: CircuitBreaker | None = None


def get_extraction_breaker() -> CircuitBreaker:
    """Get the process-wide breaker guarding the extraction service."""
    global _extraction_breaker
    if _extraction_breaker is None:
        _extraction_breaker = CircuitBreaker(
            "extraction",
            failure_threshold=settings.extraction_breaker_threshold,
            cooldown_seconds=settings.extraction_breaker_cooldown_s,
        )
    return _extraction_breaker
