"""Collaborator contracts consumed by the orchestrator.

The orchestrator owns none of these: requirement extraction, unit
generation, the deployment gateway, the run log and the target registry
are all injected. Implementations only need to match these protocols.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .models import (
    DeploymentDetails,
    DeploymentPackage,
    DeployOptions,
    FieldRequirement,
    FieldUnit,
    GeneratedUnit,
    ParsedRequirements,
    PollResult,
    RunStatus,
    SourceDocument,
    StepStatus,
    StepType,
    ValidationResult,
    ValidationRuleRequirement,
    ValidationRuleUnit,
)
from .targets import TargetSystem


@runtime_checkable
class RequirementSource(Protocol):
    """Loads the raw document a run is started from."""

    async def load(self, source_ref: str) -> SourceDocument: ...


@runtime_checkable
class RequirementExtractor(Protocol):
    """Turns raw text into structured requirements.

    Ambiguities are advisory strings, never errors.
    """

    async def parse(self, text: str, include_context: bool = False) -> ParsedRequirements: ...


@runtime_checkable
class MetadataGenerator(Protocol):
    """Synthesizes and locally validates deployable units."""

    def generate_field(self, requirement: FieldRequirement) -> FieldUnit: ...

    def generate_rule(self, requirement: ValidationRuleRequirement) -> ValidationRuleUnit: ...

    def validate(self, units: list[GeneratedUnit]) -> ValidationResult: ...


@runtime_checkable
class DeploymentGateway(Protocol):
    """Remote configuration-management system."""

    async def deploy(
        self, package: DeploymentPackage, options: DeployOptions | None = None
    ) -> str: ...

    async def poll_status(
        self, deployment_id: str, max_polls: int, poll_interval: float
    ) -> PollResult: ...

    async def describe_component(self, kind: str, name: str) -> dict[str, Any] | None: ...

    async def get_deployment_details(self, deployment_id: str) -> DeploymentDetails: ...


@runtime_checkable
class RunLog(Protocol):
    """Append-only persistence of runs and their ordered steps.

    Every write is idempotent when replayed with the same identifiers, so
    callers may retry writes freely.
    """

    async def create_run(self, source_ref: str, run_id: str | None = None) -> str: ...

    async def start_step(
        self, step_id: str, run_id: str, step_type: StepType, input_data: Any
    ) -> None: ...

    async def finish_step(
        self,
        step_id: str,
        status: StepStatus,
        output: Any | None = None,
        error: str | None = None,
    ) -> None: ...

    async def record_step(
        self,
        run_id: str,
        step_type: StepType,
        status: StepStatus,
        input_data: Any,
        output: Any | None = None,
        error: str | None = None,
        step_id: str | None = None,
    ) -> str: ...

    async def complete_run(
        self,
        run_id: str,
        status: RunStatus,
        metadata: dict[str, Any],
        error: str | None = None,
    ) -> None: ...

    async def get_run(self, run_id: str) -> dict[str, Any] | None: ...

    async def list_runs(
        self,
        source_ref: str | None = None,
        status: RunStatus | str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...


@runtime_checkable
class TargetRegistry(Protocol):
    """Lookup of deployable target systems."""

    def get(self, ref: str) -> TargetSystem: ...

    def find_staging(self, owner: str | None) -> TargetSystem | None: ...
