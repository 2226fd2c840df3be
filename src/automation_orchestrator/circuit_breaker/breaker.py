"""Circuit breaker for one class of gateway operations.

Stops calling a failing dependency once consecutive countable failures
reach a threshold, then lets a trial call through after a cooldown.

State machine:
- CLOSED: countable failures are counted; a success zeroes the count.
- OPEN: calls are rejected without invoking the operation until
  ``recovery_timeout_seconds`` have passed since the last failure.
- HALF_OPEN: one trial call at a time is let through, others are rejected;
  a single countable failure re-opens immediately and
  ``half_open_max_attempts`` consecutive successes close the circuit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from ..circuit_breaker_config import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    DEFAULT_CONFIG,
)
from ..errors import AuthorizationError, GenerationError, ValidationError
from ..retry.classifier import status_code_of
from .exceptions import CircuitOpenError

T = TypeVar("T")

_default_logger = logging.getLogger(__name__)


def should_count_failure(error: BaseException) -> bool:
    """Check if a failure should count toward tripping the breaker.

    Server errors (5xx), rate limits (429) and connectivity failures count.
    Other client errors (4xx) still propagate but say nothing about the
    health of the dependency.
    """
    if isinstance(error, (ValidationError, GenerationError)):
        return False
    status = status_code_of(error)
    if status is not None and 400 <= status < 500:
        return status == 429
    if isinstance(error, AuthorizationError):
        return False
    return True


class CircuitBreaker:
    """Circuit breaker guarding one external-operation class.

    Construct once per operation class and share the instance across every
    run that calls that operation. All state changes happen under an asyncio
    lock; the wrapped operation itself runs outside the lock.

    Usage:
        breaker = CircuitBreaker("deploy", CircuitBreakerConfig(failure_threshold=3))
        deployment_id = await breaker.execute(lambda: gateway.deploy(package))

    Attributes:
        name: Identifier used in logs and errors.
        config: Thresholds for this breaker.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the circuit breaker.

        Args:
            name: Identifier for this circuit (usually the operation class).
            config: Thresholds. Uses DEFAULT_CONFIG if None.
            logger: Logger for state transitions. Defaults to this module's logger.
            clock: Monotonic clock in seconds. Defaults to time.monotonic.
        """
        self._name = name
        self._config = config or DEFAULT_CONFIG
        self._logger = logger or _default_logger
        self._clock = clock or time.monotonic

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_attempts = 0
        self._trial_in_flight = False
        self._last_failure_tick: float | None = None
        self._last_failure_at: datetime | None = None

        # Concurrency protection
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        """Return the circuit identifier."""
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        """Return the current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Return the current failure count."""
        return self._failure_count

    @property
    def is_open(self) -> bool:
        """Check if circuit is currently open (blocking requests)."""
        return self._state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is currently closed (normal operation)."""
        return self._state == CircuitState.CLOSED

    def snapshot(self) -> CircuitBreakerState:
        """Return an immutable copy of the current state."""
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_at,
            half_open_attempts=self._half_open_attempts,
        )

    def get_time_until_retry(self) -> float:
        """Get seconds until circuit can attempt recovery."""
        if self._state != CircuitState.OPEN or self._last_failure_tick is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_tick
        return max(0.0, self._config.recovery_timeout_seconds - elapsed)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn`` through the circuit.

        Raises:
            CircuitOpenError: If the circuit is open, or HALF_OPEN with a trial
                already in flight; ``fn`` is not called.
            Exception: Whatever ``fn`` raises, after it has been accounted for.
        """
        is_trial = await self._before_call()

        try:
            result = await fn()
        except Exception as error:
            await self._on_failure(error)
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False

        await self._on_success()
        return result

    async def reset(self) -> None:
        """Manually reset the circuit to CLOSED.

        Administrative intervention only; normal operation never needs it.
        """
        async with self._lock:
            if self._state != CircuitState.CLOSED:
                self._logger.info("Circuit %s manually reset to CLOSED", self._name)
            self._transition_to_closed()

    async def _before_call(self) -> bool:
        """Admit or reject a call. Returns True when the call is the HALF_OPEN trial call."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return False
            if self._state == CircuitState.OPEN:
                if not self._should_attempt_recovery():
                    raise CircuitOpenError(self._name, self.get_time_until_retry())
                self._transition_to_half_open()
            if self._trial_in_flight:
                self._logger.debug("Circuit %s busy with a trial call, rejecting", self._name)
                raise CircuitOpenError(self._name, 0.0)
            self._trial_in_flight = True
            return True

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_attempts += 1
                if self._half_open_attempts >= self._config.half_open_max_attempts:
                    self._transition_to_closed()
                    self._logger.info("Circuit %s CLOSED after successful recovery", self._name)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _on_failure(self, error: BaseException) -> None:
        if not should_count_failure(error):
            self._logger.debug("Circuit %s ignoring client error: %s", self._name, error)
            return

        async with self._lock:
            self._failure_count += 1
            self._last_failure_tick = self._clock()
            self._last_failure_at = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to_open()
                self._logger.warning(
                    "Circuit %s tripped from HALF_OPEN to OPEN: %s", self._name, error
                )
            elif self._state == CircuitState.CLOSED:
                self._logger.warning(
                    "Circuit %s failure %d/%d: %s",
                    self._name,
                    self._failure_count,
                    self._config.failure_threshold,
                    error,
                )
                if self._failure_count >= self._config.failure_threshold:
                    self._transition_to_open()
                    self._logger.warning(
                        "Circuit %s OPENED (failures=%d)", self._name, self._failure_count
                    )

    def _should_attempt_recovery(self) -> bool:
        """Check if enough time has passed to attempt recovery."""
        if self._last_failure_tick is None:
            return True
        elapsed = self._clock() - self._last_failure_tick
        return elapsed >= self._config.recovery_timeout_seconds

    def _transition_to_open(self) -> None:
        self._state = CircuitState.OPEN
        self._half_open_attempts = 0
        self._trial_in_flight = False

    def _transition_to_half_open(self) -> None:
        self._state = CircuitState.HALF_OPEN
        self._half_open_attempts = 0
        self._logger.info("Circuit %s entering HALF_OPEN for recovery test", self._name)

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_attempts = 0
        self._trial_in_flight = False
        self._last_failure_tick = None
        self._last_failure_at = None
