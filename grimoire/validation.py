"""
Category-aware field validation.

``validate`` is a pure function: it reports every problem it finds and
never raises for bad input, so an editor can mark all offending fields at
once.
"""

from typing import Any, Mapping

from .types import (
    Category,
    PERMISSION_MODES,
    SYSTEM_FIELDS,
    Violation,
    blank,
    tags_acceptable,
)

MISSING_REQUIRED = "missing_required"
EMPTY_VALUE = "empty_value"
INVALID_ENUM = "invalid_enum"
UNSUPPORTED_FIELD = "unsupported_field"
INVALID_VALUE = "invalid_value"

REQUIRED_FIELDS: dict[Category, tuple[str, ...]] = {
    Category.PROMPT: ("name", "content"),
    Category.AGENT: ("name", "description", "content"),
    Category.SKILL: ("name", "description", "content"),
    Category.COMMAND: ("name", "content"),
}

OPTIONAL_FIELDS: dict[Category, tuple[str, ...]] = {
    Category.PROMPT: ("description", "tags"),
    Category.AGENT: ("model", "tool_list", "permission_mode", "skill_refs", "tags"),
    Category.SKILL: ("allowed_tools", "tags"),
    Category.COMMAND: ("description", "allowed_tools", "argument_hint", "model", "tags"),
}

# Report order for violations: declaration order of the item fields
_FIELD_ORDER = (
    "category", "name", "description", "content",
    "model", "tool_list", "allowed_tools", "argument_hint",
    "permission_mode", "skill_refs", "tags",
)


def required_fields(category: Any) -> tuple[str, ...]:
    """Required fields of a category; empty when the category is unknown."""
    try:
        return REQUIRED_FIELDS[Category.parse(category)]
    except (KeyError, ValueError):
        return ()


def _order(field: str) -> int:
    try:
        return _FIELD_ORDER.index(field)
    except ValueError:
        return len(_FIELD_ORDER)


def validate(category: Any, field_set: Mapping[str, Any]) -> list[Violation]:
    """
    Check a flat field set against a category's requirements.

    Args:
        category: Category or category name
        field_set: Field name to value; absent and None mean the same

    Returns:
        Violations in field order; empty when the field set is valid
    """
    if blank(category):
        return [Violation("category", MISSING_REQUIRED)]
    try:
        cat = Category.parse(category)
    except ValueError:
        return [Violation("category", INVALID_ENUM)]

    violations: list[Violation] = []

    for name in REQUIRED_FIELDS[cat]:
        value = field_set.get(name)
        if value is None:
            violations.append(Violation(name, MISSING_REQUIRED))
        elif not isinstance(value, str) or not value.strip():
            violations.append(Violation(name, EMPTY_VALUE))

    allowed = set(REQUIRED_FIELDS[cat] + OPTIONAL_FIELDS[cat])
    for name, value in field_set.items():
        if name in ("category",) + SYSTEM_FIELDS or name in allowed:
            continue
        # Blank values for foreign fields are what a generic editor sends
        if blank(value) or value == () or value == []:
            continue
        violations.append(Violation(name, UNSUPPORTED_FIELD))

    if not tags_acceptable(field_set.get("tags")):
        violations.append(Violation("tags", INVALID_VALUE))

    mode = field_set.get("permission_mode")
    if "permission_mode" in allowed and not blank(mode) and mode not in PERMISSION_MODES:
        violations.append(Violation("permission_mode", INVALID_ENUM))

    violations.sort(key=lambda v: _order(v.field))
    return violations
