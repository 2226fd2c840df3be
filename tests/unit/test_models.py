"""Tests for domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from automation_orchestrator.models import (
    AutomationResult,
    FieldDefinition,
    FieldRequirement,
    FieldType,
    FieldUnit,
    ParsedRequirements,
    RunStatus,
    UnitKind,
    ValidationRuleRequirement,
)


class TestRequirementModels:
    """Requirements accept camelCase and snake_case keys."""

    def test_camel_case_keys(self) -> None:
        req = FieldRequirement.model_validate(
            {
                "fieldName": "Tier",
                "fieldLabel": "Tier",
                "fieldType": "Picklist",
                "objectName": "Account",
                "picklistValues": ["Gold"],
                "somethingElse": 1,
            }
        )

        assert req.field_name == "Tier"
        assert req.label == "Tier"
        assert req.field_type is FieldType.PICKLIST
        assert req.picklist_values == ["Gold"]

    def test_snake_case_keys(self) -> None:
        req = FieldRequirement(field_name="Score", label="Score", object_name="Account")

        assert req.field_type is FieldType.TEXT
        assert req.required is False

    def test_unknown_field_type_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            FieldRequirement.model_validate({"fieldName": "X", "fieldType": "Hologram"})

    def test_error_location_is_constrained(self) -> None:
        with pytest.raises(PydanticValidationError):
            ValidationRuleRequirement(rule_name="R", error_location="SIDEWAYS")

    def test_merge(self) -> None:
        first = ParsedRequirements(
            fields=[FieldRequirement(field_name="A")], ambiguities=["vague"], summary="first"
        )
        second = ParsedRequirements(
            validation_rules=[ValidationRuleRequirement(rule_name="R")], summary="second"
        )

        merged = first.merge(second)

        assert merged.total == 2
        assert merged.ambiguities == ["vague"]
        assert merged.summary == "first"


class TestRunStatus:
    def test_only_running_is_not_terminal(self) -> None:
        assert RunStatus.RUNNING.is_terminal is False
        assert all(
            status.is_terminal
            for status in (RunStatus.SUCCESS, RunStatus.PARTIAL, RunStatus.FAILED)
        )


class TestUnits:
    def test_kind_maps_to_component_type(self) -> None:
        assert UnitKind.FIELD.component_type == "CustomField"
        assert UnitKind.VALIDATION_RULE.component_type == "ValidationRule"

    def test_member_name_and_to_dict(self) -> None:
        unit = FieldUnit(
            full_name="Account.Tier__c",
            container="Account",
            definition=FieldDefinition(label="Tier", field_type="Text", length=255),
        )

        data = unit.to_dict()

        assert unit.member_name == "Tier__c"
        assert data["kind"] == "FIELD"
        assert data["definition"]["length"] == 255


class TestAutomationResult:
    def test_to_dict(self) -> None:
        result = AutomationResult(
            run_id="r1", status=RunStatus.PARTIAL, errors=["e"], warnings=["w"]
        )

        assert result.to_dict() == {
            "run_id": "r1",
            "status": "PARTIAL",
            "metadata": None,
            "deployment_id": None,
            "errors": ["e"],
            "warnings": ["w"],
        }
