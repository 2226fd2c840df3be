"""Reference metadata generator.

Turns field and validation-rule requirements into deployable units and
validates them locally before anything is sent to a gateway.

Naming rules:
- Custom fields end in ``__c``; relationship names end in ``__r``.
- API names start with a letter and contain only letters, digits and
  underscores.
- Units are addressed as ``Object.Member``; the owning object must be named
  on the requirement.
"""

from __future__ import annotations

import logging
import re

from .errors import GenerationError
from .models import (
    FieldDefinition,
    FieldRequirement,
    FieldType,
    FieldUnit,
    GeneratedUnit,
    PicklistValue,
    ValidationResult,
    ValidationRuleDefinition,
    ValidationRuleRequirement,
    ValidationRuleUnit,
)

logger = logging.getLogger(__name__)

# Requirement field type -> gateway field type
FIELD_TYPE_MAPPING: dict[FieldType, str] = {
    FieldType.TEXT: "Text",
    FieldType.TEXT_AREA: "LongTextArea",
    FieldType.NUMBER: "Number",
    FieldType.CURRENCY: "Currency",
    FieldType.PERCENT: "Percent",
    FieldType.DATE: "Date",
    FieldType.DATETIME: "DateTime",
    FieldType.CHECKBOX: "Checkbox",
    FieldType.PICKLIST: "Picklist",
    FieldType.MULTI_SELECT_PICKLIST: "MultiselectPicklist",
    FieldType.EMAIL: "Email",
    FieldType.PHONE: "Phone",
    FieldType.URL: "Url",
    FieldType.LOOKUP: "Lookup",
    FieldType.MASTER_DETAIL: "MasterDetail",
    FieldType.FORMULA: "Formula",
    FieldType.AUTO_NUMBER: "AutoNumber",
}

CUSTOM_SUFFIX = "__c"
RELATIONSHIP_SUFFIX = "__r"

TEXT_MAX_LENGTH = 255
LONG_TEXT_DEFAULT_LENGTH = 32768
LONG_TEXT_MIN_LENGTH = 256
LONG_TEXT_MAX_LENGTH = 131072
MAX_PRECISION = 18
DEFAULT_AUTO_NUMBER_FORMAT = "A-{00000}"

NAMING_CONVENTIONS = ("PascalCase", "camelCase", "snake_case", "SCREAMING_SNAKE")

_API_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(__[cr])?$")
_INVALID_CHARS_RE = re.compile(r"[^a-zA-Z0-9_]")
_REPEATED_UNDERSCORES_RE = re.compile(r"_+")


def is_valid_api_name(name: str) -> bool:
    """Check letters/digits/underscores, starting with a letter."""
    return bool(_API_NAME_RE.match(name))


def ensure_custom_suffix(name: str) -> str:
    return name if name.endswith(CUSTOM_SUFFIX) else f"{name}{CUSTOM_SUFFIX}"


def relationship_name(field_name: str) -> str:
    """``Parent_Account__c`` -> ``Parent_Account__r``."""
    base = field_name[: -len(CUSTOM_SUFFIX)] if field_name.endswith(CUSTOM_SUFFIX) else field_name
    return f"{base}{RELATIONSHIP_SUFFIX}"


def sanitize_rule_name(name: str) -> str:
    return _REPEATED_UNDERSCORES_RE.sub("_", _INVALID_CHARS_RE.sub("_", name))


def picklist_api_name(value: str) -> str:
    return _INVALID_CHARS_RE.sub("_", value)


def detect_formula_return_type(formula: str) -> str:
    """Guess the return type of a formula from the functions it uses.

    Boolean operators win over dates, dates over arithmetic; anything else
    is treated as text.
    """
    upper = formula.upper()
    if any(token in upper for token in ("TRUE", "FALSE", "AND(", "OR(", "NOT(")):
        return "Checkbox"
    if any(token in upper for token in ("DATE(", "TODAY(", "DATEVALUE(")):
        return "Date"
    if any(token in upper for token in ("NOW(", "DATETIMEVALUE(")):
        return "DateTime"
    if any(
        token in upper
        for token in ("VALUE(", "ROUND(", "CEILING(", "FLOOR(", "+", "-", "*", "/")
    ):
        return "Number"
    return "Text"


def enforce_naming_convention(field_name: str, convention: str | None = None) -> str:
    """Clean a free-form name into a custom field API name.

    Args:
        field_name: Name as written by a human.
        convention: One of NAMING_CONVENTIONS, or None to keep casing.

    Returns:
        The cleaned name with the ``__c`` suffix.

    Raises:
        ValueError: If the convention is unknown.
    """
    clean = _INVALID_CHARS_RE.sub("_", field_name)
    clean = _REPEATED_UNDERSCORES_RE.sub("_", clean).strip("_")

    if convention is not None:
        if convention == "PascalCase":
            clean = _to_pascal_case(clean)
        elif convention == "camelCase":
            pascal = _to_pascal_case(clean)
            clean = pascal[:1].lower() + pascal[1:]
        elif convention == "snake_case":
            clean = clean.lower()
        elif convention == "SCREAMING_SNAKE":
            clean = clean.upper()
        else:
            msg = f"Unknown naming convention: {convention}. Valid: {', '.join(NAMING_CONVENTIONS)}"
            raise ValueError(msg)

    return ensure_custom_suffix(clean)


def _to_pascal_case(value: str) -> str:
    return "".join(word[:1].upper() + word[1:].lower() for word in value.split("_"))


class StandardMetadataGenerator:
    """Generates custom fields and validation rules from requirements."""

    def generate_field(self, requirement: FieldRequirement) -> FieldUnit:
        """Build a field unit with the type-specific properties filled in.

        Raises:
            GenerationError: If the owning object is missing, or a formula
                field has no formula.
        """
        if not requirement.object_name:
            raise GenerationError(
                requirement.field_name,
                f"Field {requirement.field_name} does not name its owning object",
            )

        member = ensure_custom_suffix(requirement.field_name)
        field_type = requirement.field_type
        definition = FieldDefinition(
            label=requirement.label,
            field_type=FIELD_TYPE_MAPPING.get(field_type, "Text"),
            description=requirement.description,
            required=requirement.required,
        )

        if field_type is FieldType.TEXT:
            definition.length = requirement.max_length or TEXT_MAX_LENGTH
            definition.unique = requirement.unique
            definition.default_value = requirement.default_value
        elif field_type is FieldType.TEXT_AREA:
            definition.length = requirement.max_length or LONG_TEXT_DEFAULT_LENGTH
            definition.visible_lines = 5
        elif field_type in (FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENT):
            definition.precision = requirement.precision or MAX_PRECISION
            if requirement.scale is not None:
                definition.scale = requirement.scale
            else:
                definition.scale = 2 if field_type is FieldType.CURRENCY else 0
            definition.default_value = requirement.default_value
        elif field_type is FieldType.CHECKBOX:
            definition.default_value = requirement.default_value or "false"
        elif field_type is FieldType.PICKLIST:
            definition.picklist_values = [
                PicklistValue(
                    full_name=picklist_api_name(value),
                    label=value,
                    default=index == 0 and requirement.default_value == value,
                )
                for index, value in enumerate(requirement.picklist_values)
            ]
        elif field_type is FieldType.MULTI_SELECT_PICKLIST:
            definition.visible_lines = 4
            definition.picklist_values = [
                PicklistValue(full_name=picklist_api_name(value), label=value)
                for value in requirement.picklist_values
            ]
        elif field_type in (FieldType.LOOKUP, FieldType.MASTER_DETAIL):
            definition.reference_to = requirement.related_object
            definition.relationship_label = requirement.label
            definition.relationship_name = relationship_name(member)
            if field_type is FieldType.LOOKUP:
                definition.delete_constraint = "SetNull"
        elif field_type is FieldType.FORMULA:
            if not requirement.formula:
                raise GenerationError(
                    requirement.field_name,
                    f"Formula field {requirement.field_name} requires a formula expression",
                )
            definition.formula = requirement.formula
            definition.formula_treat_blanks_as = "BlankAsZero"
            definition.field_type = detect_formula_return_type(requirement.formula)
        elif field_type is FieldType.AUTO_NUMBER:
            definition.display_format = requirement.display_format or DEFAULT_AUTO_NUMBER_FORMAT
        else:
            # Date, DateTime, Email, Phone, URL
            definition.default_value = requirement.default_value

        return FieldUnit(
            full_name=f"{requirement.object_name}.{member}",
            container=requirement.object_name,
            definition=definition,
        )

    def generate_rule(self, requirement: ValidationRuleRequirement) -> ValidationRuleUnit:
        """Build a validation rule unit.

        Raises:
            GenerationError: If the owning object is missing.
        """
        if not requirement.object_name:
            raise GenerationError(
                requirement.rule_name,
                f"Validation rule {requirement.rule_name} does not name its owning object",
            )

        definition = ValidationRuleDefinition(
            error_condition_formula=requirement.error_condition_formula,
            error_message=requirement.error_message,
            description=requirement.description,
            active=True,
            error_display_field=(
                requirement.related_field if requirement.error_location == "FIELD" else None
            ),
        )
        return ValidationRuleUnit(
            full_name=f"{requirement.object_name}.{sanitize_rule_name(requirement.rule_name)}",
            container=requirement.object_name,
            definition=definition,
        )

    def validate(self, units: list[GeneratedUnit]) -> ValidationResult:
        """Validate units locally and mark each one valid or invalid.

        Returns:
            Overall result with every error message, in unit order.
        """
        field_names = {unit.full_name for unit in units if isinstance(unit, FieldUnit)}
        errors: list[str] = []

        for unit in units:
            if isinstance(unit, FieldUnit):
                unit_errors = self._validate_field(unit)
            else:
                unit_errors = self._validate_rule(unit, field_names)
            unit.errors = unit_errors
            unit.is_valid = not unit_errors
            errors.extend(unit_errors)

        if errors:
            logger.info("Local validation found %d problem(s) in %d unit(s)", len(errors), len(units))
        return ValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def _validate_field(unit: FieldUnit) -> list[str]:
        errors: list[str] = []
        name = unit.full_name
        definition = unit.definition

        if not is_valid_api_name(unit.member_name):
            errors.append(
                f"Invalid field name: {name}. "
                "Must contain only alphanumeric characters and underscores."
            )
        if not definition.label:
            errors.append(f"Field {name} must have a label.")

        field_type = definition.field_type
        if field_type == "Text":
            if definition.length is not None and not 1 <= definition.length <= TEXT_MAX_LENGTH:
                errors.append(f"Text field {name} length must be between 1 and 255.")
        elif field_type == "LongTextArea":
            if definition.length is not None and not (
                LONG_TEXT_MIN_LENGTH <= definition.length <= LONG_TEXT_MAX_LENGTH
            ):
                errors.append(f"Long text area {name} length must be between 256 and 131,072.")
        elif field_type in ("Number", "Currency", "Percent"):
            precision = definition.precision
            if precision is not None and not 1 <= precision <= MAX_PRECISION:
                errors.append(f"{field_type} field {name} precision must be between 1 and 18.")
            if (
                definition.scale is not None
                and precision is not None
                and definition.scale > precision
            ):
                errors.append(f"{field_type} field {name} scale cannot exceed precision.")
        elif field_type in ("Picklist", "MultiselectPicklist"):
            if not definition.picklist_values:
                errors.append(f"Picklist field {name} must have at least one value.")
        elif field_type in ("Lookup", "MasterDetail"):
            if not definition.reference_to:
                errors.append(f"Relationship field {name} must reference an object.")
            if not definition.relationship_name:
                errors.append(f"Relationship field {name} must have a relationship name.")

        if definition.formula_treat_blanks_as is not None and not definition.formula:
            errors.append(f"Formula field {name} must have a formula expression.")
        return errors

    @staticmethod
    def _validate_rule(unit: ValidationRuleUnit, field_names: set[str]) -> list[str]:
        errors: list[str] = []
        name = unit.full_name
        definition = unit.definition

        if not is_valid_api_name(unit.member_name):
            errors.append(f"Invalid validation rule name: {name}.")
        if not definition.error_condition_formula:
            errors.append(f"Validation rule {name} must have an error condition formula.")
        if not definition.error_message:
            errors.append(f"Validation rule {name} must have an error message.")

        display_field = definition.error_display_field
        if display_field and f"{unit.container}.{display_field}" not in field_names:
            errors.append(
                f"Validation rule {name} references non-existent field: {display_field}."
            )
        return errors
