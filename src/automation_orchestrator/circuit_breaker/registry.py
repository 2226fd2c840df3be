"""Circuit breaker registry.

Holds exactly one breaker per operation class for the lifetime of the
process. Build the registry once and pass it to every orchestrator so that
concurrent runs share breaker state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from ..circuit_breaker_config import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    DEFAULT_CONFIG,
    OperationClass,
)
from .breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class CircuitBreakerRegistry:
    """Central registry for the per-operation-class circuit breakers.

    Usage:
        registry = CircuitBreakerRegistry(config)
        deploy_breaker = registry.get(OperationClass.DEPLOY)

        # Monitoring
        stats = await registry.get_circuit_stats()

    Attributes:
        config: Default thresholds for every breaker.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        overrides: Mapping[OperationClass, CircuitBreakerConfig] | None = None,
        *,
        breaker_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the circuit breaker registry.

        Args:
            config: Default configuration. Uses DEFAULT_CONFIG if None.
            overrides: Per-operation-class configuration.
            breaker_logger: Logger injected into every breaker created here.
        """
        self._config = config or DEFAULT_CONFIG
        self._overrides = dict(overrides or {})
        self._breaker_logger = breaker_logger
        self._circuits: dict[OperationClass, CircuitBreaker] = {}

        # Concurrency protection for bulk operations
        self._lock = asyncio.Lock()

    def get(self, operation: OperationClass) -> CircuitBreaker:
        """Get or create the breaker for an operation class.

        Creation has no await point, so concurrent callers always receive the
        same instance.
        """
        circuit = self._circuits.get(operation)
        if circuit is None:
            circuit = CircuitBreaker(
                operation.value,
                self._overrides.get(operation, self._config),
                logger=self._breaker_logger,
            )
            self._circuits[operation] = circuit
            logger.debug("Created circuit breaker for %s", operation.value)
        return circuit

    def snapshot_all(self) -> dict[str, CircuitBreakerState]:
        """Snapshot every breaker created so far, keyed by operation class."""
        return {op.value: circuit.snapshot() for op, circuit in self._circuits.items()}

    async def get_all_open_circuits(self) -> list[CircuitBreaker]:
        """Get all circuits currently in OPEN or HALF_OPEN state."""
        async with self._lock:
            return [
                circuit
                for circuit in self._circuits.values()
                if circuit.state in (CircuitState.OPEN, CircuitState.HALF_OPEN)
            ]

    async def get_circuit_stats(self) -> dict[str, Any]:
        """Get statistics about registered circuits.

        Returns:
            Dictionary with cache size, open count and per-circuit states.
        """
        async with self._lock:
            return {
                "circuits_registered": len(self._circuits),
                "circuits_open": sum(
                    1 for c in self._circuits.values() if c.state != CircuitState.CLOSED
                ),
                "states": {op.value: c.state.value for op, c in self._circuits.items()},
            }

    async def reset_all(self) -> int:
        """Reset all circuits to CLOSED state.

        Administrative function for recovery from widespread issues.

        Returns:
            Number of circuits reset.
        """
        async with self._lock:
            reset_count = 0
            for circuit in self._circuits.values():
                if circuit.state != CircuitState.CLOSED:
                    await circuit.reset()
                    reset_count += 1

            logger.info("Reset %d circuits via registry.reset_all()", reset_count)
            return reset_count
