"""Requirement sources and the structured requirement extractor.

A requirement document is a JSON file. Its ``description`` (and optional
``acceptanceCriteria``) either hold prose or a structured requirement
block::

    {
      "description": {
        "fields": [{"objectName": "Account", "fieldName": "Tier", "fieldType": "Picklist",
                    "picklistValues": ["Gold", "Silver"]}],
        "validationRules": [],
        "summary": "Add a tier to accounts"
      },
      "acceptanceCriteria": "Tier must be visible on the layout"
    }

Prose cannot be turned into requirements without a language model, so it
produces an empty result carrying an ambiguity note instead of an error.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .models import ParsedRequirements, SourceDocument

logger = logging.getLogger(__name__)


class FileRequirementSource:
    """Loads requirement documents from JSON files.

    Args:
        base_dir: Directory relative source refs are resolved against.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def _resolve(self, source_ref: str) -> Path:
        path = Path(source_ref)
        return path if path.is_absolute() else self.base_dir / path

    async def load(self, source_ref: str) -> SourceDocument:
        """Read a requirement document.

        Raises:
            ConfigurationError: If the file does not exist.
            ValueError: If the file is not valid JSON.
        """
        path = self._resolve(source_ref)
        if not path.is_file():
            msg = f"Requirement source {source_ref} not found at {path}"
            raise ConfigurationError(msg)

        raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            msg = f"Requirement source {source_ref} is not valid JSON: {e}"
            raise ValueError(msg) from e

        if not isinstance(document, dict) or "description" not in document:
            # A bare requirement block with no wrapper
            return SourceDocument(ref=source_ref, text=raw)

        criteria = document.get("acceptanceCriteria", document.get("acceptance_criteria"))
        return SourceDocument(
            ref=source_ref,
            text=_as_text(document["description"]),
            acceptance_criteria=_as_text(criteria) if criteria else None,
        )


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


class StructuredRequirementExtractor:
    """Extracts requirements from structured (JSON) requirement text.

    Args:
        default_object: Owning object applied to requirements that name
            none, when the caller asks for context.
    """

    def __init__(self, default_object: str | None = None) -> None:
        self.default_object = default_object

    async def parse(self, text: str, include_context: bool = False) -> ParsedRequirements:
        """Parse requirement text.

        Args:
            text: JSON requirement block, or prose.
            include_context: Fill in ``default_object`` where the owning
                object is missing.

        Returns:
            Parsed requirements; prose yields an empty result with an
            ambiguity explaining why.

        Raises:
            ValueError: If the text is JSON but does not describe requirements.
        """
        stripped = text.strip()
        if not stripped.startswith(("{", "[")):
            logger.debug("Requirement text is prose; nothing to extract")
            return ParsedRequirements(
                ambiguities=[f"Could not extract structured requirements from: {_preview(stripped)}"]
            )

        data = json.loads(stripped)
        if isinstance(data, list):
            data = {"fields": data}
        parsed = ParsedRequirements.model_validate(data)

        if include_context and self.default_object:
            for requirement in [*parsed.fields, *parsed.validation_rules]:
                if not requirement.object_name:
                    requirement.object_name = self.default_object
        return parsed


def _preview(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."
