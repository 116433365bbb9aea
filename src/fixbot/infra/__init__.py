"""Infrastructure helpers shared by external-service clients."""

from fixbot.infra.circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitOpenError,
    get_extraction_breaker,
)

__all__ = ["BreakerState", "CircuitBreaker", "CircuitOpenError", "get_extraction_breaker"]
