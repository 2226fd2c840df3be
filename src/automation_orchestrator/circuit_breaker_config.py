"""Circuit breaker configuration for the automation orchestrator.

This module defines the circuit states, the classes of external operations
that each get their own breaker, and the thresholds that drive state
transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class CircuitState(Enum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"  # Normal operation - requests allowed
    OPEN = "open"  # Circuit tripped - requests blocked
    HALF_OPEN = "half_open"  # Testing recovery - requests allowed, one failure re-opens


class OperationClass(Enum):
    """Classes of gateway operations, one breaker per class."""

    DEPLOY = "deploy"  # Submitting packages (including rollbacks)
    DEPLOY_STATUS = "deploy_status"  # Polling deployment status
    DESCRIBE = "describe"  # Component lookups during verification
    DEPLOYMENT_DETAILS = "deployment_details"  # Fetching what a deployment contained


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for a single circuit breaker.

    Attributes:
        failure_threshold: Consecutive countable failures before opening.
        recovery_timeout_seconds: Time since the last failure before a trial call is allowed.
        half_open_max_attempts: Consecutive successes in HALF_OPEN needed to close.
    """

    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60.0
    half_open_max_attempts: int = 3

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            msg = f"failure_threshold must be >= 1, got {self.failure_threshold}"
            raise ValueError(msg)
        if self.recovery_timeout_seconds < 0:
            msg = f"recovery_timeout_seconds must be >= 0, got {self.recovery_timeout_seconds}"
            raise ValueError(msg)
        if self.half_open_max_attempts < 1:
            msg = f"half_open_max_attempts must be >= 1, got {self.half_open_max_attempts}"
            raise ValueError(msg)


@dataclass(frozen=True)
class CircuitBreakerState:
    """Point-in-time snapshot of a breaker, safe to hand to callers.

    Attributes:
        state: Current circuit state.
        failure_count: Countable failures since the last reset.
        last_failure_time: Wall-clock time of the most recent countable failure.
        half_open_attempts: Consecutive successes recorded while HALF_OPEN.
    """

    state: CircuitState
    failure_count: int
    last_failure_time: datetime | None
    half_open_attempts: int


# Default configuration instance for convenience
DEFAULT_CONFIG = CircuitBreakerConfig()
