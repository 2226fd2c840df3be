"""Circuit breaker implementation for the automation orchestrator.

Implements the circuit breaker pattern per class of gateway operation to
stop hammering a failing dependency.

The circuit breaker has three states:
- CLOSED: Normal operation, failures are counted
- OPEN: Circuit tripped, requests immediately fail
- HALF_OPEN: Testing recovery, one failure re-opens
"""

from .breaker import CircuitBreaker, should_count_failure
from .exceptions import CircuitBreakerError, CircuitOpenError
from .registry import CircuitBreakerRegistry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "should_count_failure",
]
