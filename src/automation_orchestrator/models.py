"""Domain models for the automation pipeline.

This module defines the data structures that flow through the pipeline:

    PARSE -> GENERATE -> VALIDATE -> (dry run exit) -> DEPLOY -> VERIFY -> (ROLLBACK)

Requirements arrive from outside the process, so they are pydantic models
that validate and accept both camelCase and snake_case keys. Everything the
pipeline produces itself is a plain dataclass.

Generated units are a tagged variant: ``FieldUnit`` or ``ValidationRuleUnit``,
each with its own definition payload, discriminated by ``kind``.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RunStatus(str, Enum):
    """Lifecycle states of an automation run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class StepType(str, Enum):
    """Pipeline stages recorded in the audit trail."""

    PARSE = "PARSE"
    GENERATE = "GENERATE"
    VALIDATE = "VALIDATE"
    DEPLOY = "DEPLOY"
    VERIFY = "VERIFY"
    ERROR = "ERROR"


class StepStatus(str, Enum):
    """States of a single audit step."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UnitKind(str, Enum):
    """Kinds of deployable configuration units."""

    FIELD = "FIELD"
    VALIDATION_RULE = "VALIDATION_RULE"

    @property
    def component_type(self) -> str:
        """Component type name used by the deployment gateway."""
        return _COMPONENT_TYPES[self]


_COMPONENT_TYPES = {
    UnitKind.FIELD: "CustomField",
    UnitKind.VALIDATION_RULE: "ValidationRule",
}


# =============================================================================
# Requirements (external input)
# =============================================================================


class FieldType(str, Enum):
    """Field types a requirement may ask for."""

    TEXT = "Text"
    TEXT_AREA = "TextArea"
    NUMBER = "Number"
    CURRENCY = "Currency"
    PERCENT = "Percent"
    DATE = "Date"
    DATETIME = "DateTime"
    CHECKBOX = "Checkbox"
    PICKLIST = "Picklist"
    MULTI_SELECT_PICKLIST = "MultiSelectPicklist"
    EMAIL = "Email"
    PHONE = "Phone"
    URL = "URL"
    LOOKUP = "Lookup"
    MASTER_DETAIL = "MasterDetail"
    FORMULA = "Formula"
    AUTO_NUMBER = "AutoNumber"


class _RequirementModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FieldRequirement(_RequirementModel):
    """A request for a new custom field.

    ``object_name`` names the owning object. It is optional here so that a
    single incomplete requirement fails generation on its own instead of
    rejecting the whole requirement document.
    """

    field_name: str
    label: str = Field(default="", alias="fieldLabel")
    field_type: FieldType = FieldType.TEXT
    object_name: str | None = None
    description: str | None = None
    required: bool = False
    unique: bool = False
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    default_value: str | None = None
    picklist_values: list[str] = Field(default_factory=list)
    related_object: str | None = None
    formula: str | None = None
    display_format: str | None = None


class ValidationRuleRequirement(_RequirementModel):
    """A request for a new validation rule on an object."""

    rule_name: str
    object_name: str | None = None
    description: str = ""
    error_condition_formula: str = ""
    error_message: str = ""
    error_location: Literal["TOP", "FIELD"] = "TOP"
    related_field: str | None = None


class ParsedRequirements(_RequirementModel):
    """Structured requirements extracted from a source document."""

    fields: list[FieldRequirement] = Field(default_factory=list)
    validation_rules: list[ValidationRuleRequirement] = Field(default_factory=list)
    ambiguities: list[str] = Field(default_factory=list)
    summary: str = ""

    def merge(self, other: ParsedRequirements) -> ParsedRequirements:
        """Return a new instance holding the requirements of both."""
        return ParsedRequirements(
            fields=[*self.fields, *other.fields],
            validation_rules=[*self.validation_rules, *other.validation_rules],
            ambiguities=[*self.ambiguities, *other.ambiguities],
            summary=self.summary or other.summary,
        )

    @property
    def total(self) -> int:
        return len(self.fields) + len(self.validation_rules)


@dataclass(frozen=True)
class SourceDocument:
    """Raw text a run starts from (e.g. a ticket description)."""

    ref: str
    text: str
    acceptance_criteria: str | None = None


# =============================================================================
# Generated units (tagged variant)
# =============================================================================


@dataclass(frozen=True)
class PicklistValue:
    full_name: str
    label: str
    default: bool = False


@dataclass
class FieldDefinition:
    """Gateway-ready definition of a custom field."""

    label: str
    field_type: str
    description: str | None = None
    required: bool = False
    unique: bool = False
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    visible_lines: int | None = None
    default_value: str | None = None
    picklist_values: list[PicklistValue] = field(default_factory=list)
    formula: str | None = None
    formula_treat_blanks_as: str | None = None
    reference_to: str | None = None
    relationship_label: str | None = None
    relationship_name: str | None = None
    delete_constraint: str | None = None
    display_format: str | None = None


@dataclass
class ValidationRuleDefinition:
    """Gateway-ready definition of a validation rule."""

    error_condition_formula: str
    error_message: str
    description: str = ""
    active: bool = True
    error_display_field: str | None = None


@dataclass
class FieldUnit:
    """A generated custom field.

    Attributes:
        full_name: Fully-qualified name, ``Container.Member__c``.
        container: Owning object the field is created on.
        definition: Field-specific payload.
        is_valid: Set by local validation.
        errors: Validation messages for this unit.
    """

    kind: ClassVar[UnitKind] = UnitKind.FIELD

    full_name: str
    container: str
    definition: FieldDefinition
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)

    @property
    def member_name(self) -> str:
        return self.full_name.split(".", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **asdict(self)}


@dataclass
class ValidationRuleUnit:
    """A generated validation rule."""

    kind: ClassVar[UnitKind] = UnitKind.VALIDATION_RULE

    full_name: str
    container: str
    definition: ValidationRuleDefinition
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)

    @property
    def member_name(self) -> str:
        return self.full_name.split(".", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **asdict(self)}


GeneratedUnit = FieldUnit | ValidationRuleUnit


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


# =============================================================================
# Deployment
# =============================================================================


@dataclass(frozen=True)
class ComponentDescriptor:
    """One deployed component, as known to the gateway."""

    component_type: str
    full_name: str

    def to_dict(self) -> dict[str, str]:
        return {"component_type": self.component_type, "full_name": self.full_name}


@dataclass(frozen=True)
class PackageType:
    name: str
    members: tuple[str, ...]


@dataclass(frozen=True)
class DeploymentPackage:
    """A set of components submitted to the gateway in one deployment.

    Attributes:
        types: Component types with their member names, in submission order.
        version: Gateway API version the package targets.
        destructive: True for deletion packages (rollback).
    """

    types: tuple[PackageType, ...]
    version: str
    destructive: bool = False

    def components(self) -> list[ComponentDescriptor]:
        return [
            ComponentDescriptor(component_type=package_type.name, full_name=member)
            for package_type in self.types
            for member in package_type.members
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "types": [{"name": t.name, "members": list(t.members)} for t in self.types],
            "version": self.version,
            "destructive": self.destructive,
        }


@dataclass(frozen=True)
class DeployOptions:
    """Per-call deploy options passed to the gateway."""

    target_id: str | None = None
    rollback: bool = False


@dataclass(frozen=True)
class PollResult:
    """Terminal (or last observed) state of a deployment."""

    success: bool
    status: str
    done: bool = True
    error_message: str | None = None


@dataclass(frozen=True)
class DeploymentDetails:
    deployment_id: str
    status: str
    components: tuple[ComponentDescriptor, ...] = ()


@dataclass(frozen=True)
class DeploymentDescriptor:
    """Record of what was actually submitted; the only input to rollback."""

    external_id: str
    submitted_at: datetime
    status: str
    components: tuple[ComponentDescriptor, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "submitted_at": self.submitted_at.isoformat(),
            "status": self.status,
            "components": [c.to_dict() for c in self.components],
        }


@dataclass(frozen=True)
class ComponentCheck:
    full_name: str
    component_type: str
    found: bool
    error: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    checks: tuple[ComponentCheck, ...] = ()

    @property
    def missing(self) -> list[str]:
        return [check.full_name for check in self.checks if not check.found]

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "checks": [asdict(c) for c in self.checks]}


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    rollback_id: str | None = None
    error: str | None = None


# =============================================================================
# Run options and results
# =============================================================================


@dataclass
class RunOptions:
    """Options for a single orchestrator run.

    Attributes:
        source_ref: Reference to the requirement source (e.g. a ticket id).
        target_ref: Reference to the nominal target system.
        deploy_to_production: Allow deploying straight to a production system.
        dry_run: Stop after VALIDATE without touching the gateway.
        include_context: Passed through to the requirement extractor.
        abort_event: Set by the caller to abort the run between stages.
    """

    source_ref: str
    target_ref: str
    deploy_to_production: bool = False
    dry_run: bool = False
    include_context: bool = False
    abort_event: asyncio.Event | None = None


@dataclass
class AutomationResult:
    """Structured outcome of a run. Failures are data, not exceptions."""

    run_id: str
    status: RunStatus
    metadata: list[GeneratedUnit] | None = None
    deployment_id: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "metadata": [u.to_dict() for u in self.metadata] if self.metadata is not None else None,
            "deployment_id": self.deployment_id,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
