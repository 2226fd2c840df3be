"""Gateway wrapper adding retries and circuit breakers.

Every call goes Retry -> Circuit Breaker -> Gateway, using the breaker of
the call's operation class. An open circuit is not retryable, so it
surfaces on the first attempt.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from ..circuit_breaker import CircuitBreakerRegistry
from ..circuit_breaker_config import OperationClass
from ..contracts import DeploymentGateway
from ..models import DeploymentDetails, DeploymentPackage, DeployOptions, PollResult
from ..retry import RetryHandler

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ResilientGateway:
    """DeploymentGateway decorator composing retry and circuit breaking.

    Args:
        gateway: The gateway actually performing the calls.
        breakers: Registry shared by every run in the process.
        retry: Retry handler applied around each breaker call.
    """

    def __init__(
        self,
        gateway: DeploymentGateway,
        breakers: CircuitBreakerRegistry,
        retry: RetryHandler | None = None,
    ) -> None:
        self._gateway = gateway
        self._breakers = breakers
        self._retry = retry or RetryHandler()

    @property
    def inner(self) -> DeploymentGateway:
        return self._gateway

    async def _call(self, operation: OperationClass, fn: Callable[[], Awaitable[T]]) -> T:
        breaker = self._breakers.get(operation)
        return await self._retry.execute(lambda: breaker.execute(fn))

    async def deploy(self, package: DeploymentPackage, options: DeployOptions | None = None) -> str:
        return await self._call(OperationClass.DEPLOY, lambda: self._gateway.deploy(package, options))

    async def poll_status(
        self, deployment_id: str, max_polls: int, poll_interval: float
    ) -> PollResult:
        return await self._call(
            OperationClass.DEPLOY_STATUS,
            lambda: self._gateway.poll_status(deployment_id, max_polls, poll_interval),
        )

    async def describe_component(self, kind: str, name: str) -> dict[str, Any] | None:
        return await self._call(
            OperationClass.DESCRIBE, lambda: self._gateway.describe_component(kind, name)
        )

    async def get_deployment_details(self, deployment_id: str) -> DeploymentDetails:
        return await self._call(
            OperationClass.DEPLOYMENT_DETAILS,
            lambda: self._gateway.get_deployment_details(deployment_id),
        )
