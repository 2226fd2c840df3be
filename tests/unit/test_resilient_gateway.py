"""Tests for the Retry -> Circuit Breaker -> Gateway composition."""

from __future__ import annotations

import pytest

from automation_orchestrator.circuit_breaker import CircuitBreakerRegistry, CircuitOpenError
from automation_orchestrator.circuit_breaker_config import (
    CircuitBreakerConfig,
    CircuitState,
    OperationClass,
)
from automation_orchestrator.errors import AuthorizationError, RateLimitError, ServerError
from automation_orchestrator.gateway import ResilientGateway
from automation_orchestrator.models import DeploymentPackage, PackageType, PollResult
from automation_orchestrator.retry import RetryConfig, RetryHandler
from tests.fakes import FakeGateway, RecordingSleep

PACKAGE = DeploymentPackage(
    types=(PackageType("CustomField", ("Account.Tier__c",)),), version="59.0"
)


@pytest.fixture
def fake() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))


@pytest.fixture
def gateway(
    fake: FakeGateway, breakers: CircuitBreakerRegistry, sleep: RecordingSleep
) -> ResilientGateway:
    retry = RetryHandler(RetryConfig(max_retries=5, initial_delay=0.1, jitter=0.0), sleep=sleep)
    return ResilientGateway(fake, breakers, retry)


class TestResilientGateway:
    """Tests for ResilientGateway."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, gateway: ResilientGateway, fake: FakeGateway, sleep: RecordingSleep,
        breakers: CircuitBreakerRegistry,
    ) -> None:
        fake.deploy_errors = [RateLimitError()]

        assert await gateway.deploy(PACKAGE) == "dep-1"

        assert fake.deploy_attempts == 2
        assert sleep.delays == [0.1]
        assert breakers.get(OperationClass.DEPLOY).failure_count == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_surfaces_once(
        self, gateway: ResilientGateway, fake: FakeGateway, sleep: RecordingSleep
    ) -> None:
        fake.deploy_error = AuthorizationError(401, "expired")

        with pytest.raises(AuthorizationError):
            await gateway.deploy(PACKAGE)

        assert fake.deploy_attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_open_circuit_stops_retries(
        self, gateway: ResilientGateway, fake: FakeGateway, breakers: CircuitBreakerRegistry
    ) -> None:
        fake.deploy_error = ServerError(503, "unavailable")

        with pytest.raises(CircuitOpenError):
            await gateway.deploy(PACKAGE)

        assert fake.deploy_attempts == 2
        assert breakers.get(OperationClass.DEPLOY).state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_breakers_are_per_operation_class(
        self, gateway: ResilientGateway, fake: FakeGateway, breakers: CircuitBreakerRegistry
    ) -> None:
        fake.deploy_error = ServerError(503, "unavailable")
        with pytest.raises(CircuitOpenError):
            await gateway.deploy(PACKAGE)

        described = await gateway.describe_component("CustomField", "Account.Tier__c")

        assert described is not None
        assert breakers.get(OperationClass.DESCRIBE).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_poll_and_details_pass_through(
        self, gateway: ResilientGateway, fake: FakeGateway
    ) -> None:
        fake.poll_results["dep-1"] = PollResult(False, "Failed", error_message="bad")
        deployment_id = await gateway.deploy(PACKAGE)

        poll = await gateway.poll_status(deployment_id, 3, 0.0)
        details = await gateway.get_deployment_details(deployment_id)

        assert poll.error_message == "bad"
        assert fake.polls == [("dep-1", 3, 0.0)]
        assert [c.full_name for c in details.components] == ["Account.Tier__c"]
        assert gateway.inner is fake
