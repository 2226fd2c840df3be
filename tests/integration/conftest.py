"""Shared fixtures for orchestrator integration tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest

from automation_orchestrator.circuit_breaker import CircuitBreakerRegistry
from automation_orchestrator.database import AutomationDB
from automation_orchestrator.extractor import StructuredRequirementExtractor
from automation_orchestrator.generator import StandardMetadataGenerator
from automation_orchestrator.orchestrator import AutomationOrchestrator, OrchestratorConfig
from automation_orchestrator.retry import RetryConfig, RetryHandler
from automation_orchestrator.targets import InMemoryTargetRegistry, TargetKind, TargetSystem
from tests.fakes import FakeGateway, FakeSource, RecordingSleep, requirement_document

PROD = TargetSystem("prod", "Production", TargetKind.PRODUCTION, owner="acme", endpoint="https://p")
STAGING = TargetSystem("staging", "Staging", TargetKind.STAGING, owner="acme", endpoint="https://s")

TIER_FIELD = {
    "objectName": "Account",
    "fieldName": "Tier",
    "fieldLabel": "Tier",
    "fieldType": "Picklist",
    "picklistValues": ["Gold", "Silver"],
}
SCORE_FIELD = {
    "objectName": "Account",
    "fieldName": "Score",
    "fieldLabel": "Score",
    "fieldType": "Number",
}
TIER_RULE = {
    "ruleName": "Tier_Required",
    "objectName": "Account",
    "errorConditionFormula": "ISBLANK(TEXT(Tier__c))",
    "errorMessage": "Tier is required",
    "errorLocation": "FIELD",
    "relatedField": "Tier__c",
}

DOCUMENTS = {
    "TICKET-1": requirement_document([TIER_FIELD, SCORE_FIELD], [TIER_RULE], "Account tiers"),
    "TICKET-EMPTY-PICKLIST": requirement_document(
        [{**TIER_FIELD, "picklistValues": []}]
    ),
    "TICKET-ORPHAN": requirement_document(
        [SCORE_FIELD, {"fieldName": "Orphan", "fieldLabel": "Orphan"}]
    ),
    "TICKET-PROSE": "Please add a tier picklist to accounts",
}

FAST_CONFIG = OrchestratorConfig(
    max_polls=3,
    poll_interval_seconds=0.0,
    rollback_max_polls=2,
    rollback_poll_interval_seconds=0.0,
    verify_concurrency=2,
)


@pytest.fixture
async def db() -> AsyncIterator[AutomationDB]:
    """In-memory database with schema initialized."""
    async with AutomationDB(":memory:") as database:
        yield database


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(dict(DOCUMENTS))


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry()


@pytest.fixture
def make_orchestrator(
    db: AutomationDB,
    gateway: FakeGateway,
    source: FakeSource,
    sleep: RecordingSleep,
    breakers: CircuitBreakerRegistry,
) -> Any:
    """Factory building an orchestrator wired to the fakes; overrides by keyword."""

    def factory(**overrides: Any) -> AutomationOrchestrator:
        retry_config = RetryConfig(max_retries=2, initial_delay=0.01, jitter=0.0)
        kwargs: dict[str, Any] = {
            "source": source,
            "extractor": StructuredRequirementExtractor(),
            "generator": StandardMetadataGenerator(),
            "run_log": db,
            "targets": InMemoryTargetRegistry([PROD, STAGING]),
            "gateway_for": lambda target: gateway,
            "breakers": breakers,
            "retry": RetryHandler(retry_config, sleep=sleep),
            "log_retry": RetryHandler(retry_config, sleep=sleep),
            "config": FAST_CONFIG,
        }
        kwargs.update(overrides)
        return AutomationOrchestrator(
            kwargs.pop("source"),
            kwargs.pop("extractor"),
            kwargs.pop("generator"),
            kwargs.pop("run_log"),
            kwargs.pop("targets"),
            kwargs.pop("gateway_for"),
            **kwargs,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator: Any) -> AutomationOrchestrator:
    return make_orchestrator()
