"""Tests for the file requirement source and structured extractor."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from automation_orchestrator.errors import ConfigurationError
from automation_orchestrator.extractor import (
    FileRequirementSource,
    StructuredRequirementExtractor,
)
from automation_orchestrator.models import FieldType

REQUIREMENTS = {
    "fields": [
        {
            "objectName": "Account",
            "fieldName": "Tier",
            "fieldLabel": "Tier",
            "fieldType": "Picklist",
            "picklistValues": ["Gold", "Silver"],
        },
        {"field_name": "Score", "fieldLabel": "Score", "field_type": "Number"},
    ],
    "validationRules": [
        {
            "ruleName": "Tier_Required",
            "objectName": "Account",
            "errorConditionFormula": "ISBLANK(TEXT(Tier__c))",
            "errorMessage": "Tier is required",
        }
    ],
    "summary": "Add a tier to accounts",
}


class TestFileRequirementSource:
    """Tests for FileRequirementSource.load()."""

    @pytest.mark.asyncio
    async def test_wrapped_document(self, tmp_path: Path) -> None:
        (tmp_path / "ticket.json").write_text(
            json.dumps({"description": REQUIREMENTS, "acceptanceCriteria": "Tier is visible"}),
            encoding="utf-8",
        )

        document = await FileRequirementSource(tmp_path).load("ticket.json")

        assert document.ref == "ticket.json"
        assert json.loads(document.text) == REQUIREMENTS
        assert document.acceptance_criteria == "Tier is visible"

    @pytest.mark.asyncio
    async def test_bare_requirement_block(self, tmp_path: Path) -> None:
        path = tmp_path / "bare.json"
        path.write_text(json.dumps(REQUIREMENTS), encoding="utf-8")

        document = await FileRequirementSource().load(str(path))

        assert json.loads(document.text) == REQUIREMENTS
        assert document.acceptance_criteria is None

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            await FileRequirementSource(tmp_path).load("absent.json")

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError, match="not valid JSON"):
            await FileRequirementSource(tmp_path).load("broken.json")


class TestStructuredRequirementExtractor:
    """Tests for StructuredRequirementExtractor.parse()."""

    @pytest.mark.asyncio
    async def test_parses_camel_and_snake_case(self) -> None:
        parsed = await StructuredRequirementExtractor().parse(json.dumps(REQUIREMENTS))

        assert [f.field_name for f in parsed.fields] == ["Tier", "Score"]
        assert parsed.fields[0].field_type is FieldType.PICKLIST
        assert parsed.fields[0].picklist_values == ["Gold", "Silver"]
        assert parsed.fields[1].object_name is None
        assert parsed.validation_rules[0].error_message == "Tier is required"
        assert parsed.summary == "Add a tier to accounts"
        assert parsed.ambiguities == []

    @pytest.mark.asyncio
    async def test_list_is_treated_as_fields(self) -> None:
        parsed = await StructuredRequirementExtractor().parse(json.dumps(REQUIREMENTS["fields"]))

        assert parsed.total == 2
        assert parsed.validation_rules == []

    @pytest.mark.asyncio
    async def test_include_context_fills_default_object(self) -> None:
        extractor = StructuredRequirementExtractor(default_object="Opportunity")

        with_context = await extractor.parse(json.dumps(REQUIREMENTS), include_context=True)
        without_context = await extractor.parse(json.dumps(REQUIREMENTS))

        assert [f.object_name for f in with_context.fields] == ["Account", "Opportunity"]
        assert without_context.fields[1].object_name is None

    @pytest.mark.asyncio
    async def test_prose_yields_ambiguity(self) -> None:
        parsed = await StructuredRequirementExtractor().parse(
            "Please add a tier picklist to accounts"
        )

        assert parsed.total == 0
        assert parsed.ambiguities == [
            "Could not extract structured requirements from: Please add a tier picklist to accounts"
        ]

    @pytest.mark.asyncio
    async def test_long_prose_is_truncated_in_ambiguity(self) -> None:
        parsed = await StructuredRequirementExtractor().parse("x" * 100)
        assert parsed.ambiguities[0].endswith("x" * 60 + "...")

    @pytest.mark.asyncio
    async def test_malformed_json_raises(self) -> None:
        with pytest.raises(ValueError):
            await StructuredRequirementExtractor().parse("{broken")

    def test_merge_concatenates(self) -> None:
        from automation_orchestrator.models import ParsedRequirements

        first = ParsedRequirements.model_validate(REQUIREMENTS)
        second = ParsedRequirements(ambiguities=["unclear"], summary="other")

        merged = first.merge(second)

        assert merged.total == 3
        assert merged.ambiguities == ["unclear"]
        assert merged.summary == "Add a tier to accounts"
