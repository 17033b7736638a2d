"""Tests for category-aware field validation."""

import pytest

from grimoire.types import Violation
from grimoire.validation import (
    EMPTY_VALUE,
    INVALID_ENUM,
    INVALID_VALUE,
    MISSING_REQUIRED,
    UNSUPPORTED_FIELD,
    required_fields,
    validate,
)

from tests.conftest import agent_fields, command_fields, prompt_fields, skill_fields


class TestRequiredFields:

    @pytest.mark.parametrize("fields", [
        prompt_fields(),
        agent_fields(),
        skill_fields(),
        command_fields(),
    ])
    def test_minimal_valid_items(self, fields):
        assert validate(fields["category"], fields) == []

    def test_agent_without_description(self):
        fields = {"category": "agent", "name": "foo2", "content": "x"}
        assert validate("agent", fields) == [Violation("description", MISSING_REQUIRED)]

    def test_skill_requires_description(self):
        fields = skill_fields()
        del fields["description"]
        assert validate("skill", fields) == [Violation("description", MISSING_REQUIRED)]

    def test_none_counts_as_missing(self):
        assert validate("prompt", prompt_fields(content=None)) == [
            Violation("content", MISSING_REQUIRED)
        ]

    def test_whitespace_is_empty(self):
        assert validate("prompt", prompt_fields(name="   ")) == [
            Violation("name", EMPTY_VALUE)
        ]

    def test_description_optional_for_prompt_and_command(self):
        assert validate("prompt", prompt_fields(description=None)) == []
        assert validate("command", command_fields(description="")) == []

    def test_all_violations_reported_in_field_order(self):
        fields = {"category": "agent", "content": "", "permission_mode": "yolo"}
        assert validate("agent", fields) == [
            Violation("name", MISSING_REQUIRED),
            Violation("description", MISSING_REQUIRED),
            Violation("content", EMPTY_VALUE),
            Violation("permission_mode", INVALID_ENUM),
        ]


class TestCategory:

    def test_unknown_category(self):
        assert validate("widget", {"name": "a", "content": "b"}) == [
            Violation("category", INVALID_ENUM)
        ]

    def test_missing_category(self):
        assert validate(None, {"name": "a", "content": "b"}) == [
            Violation("category", MISSING_REQUIRED)
        ]
        assert validate("  ", {"name": "a", "content": "b"}) == [
            Violation("category", MISSING_REQUIRED)
        ]

    def test_category_is_case_insensitive(self):
        assert validate("Prompt", prompt_fields()) == []


class TestOptionalAttributes:

    @pytest.mark.parametrize("mode", ["default", "acceptEdits", "bypassPermissions", "plan"])
    def test_permission_modes(self, mode):
        assert validate("agent", agent_fields(permission_mode=mode)) == []

    def test_permission_mode_is_case_sensitive(self):
        assert validate("agent", agent_fields(permission_mode="Plan")) == [
            Violation("permission_mode", INVALID_ENUM)
        ]

    def test_blank_permission_mode_is_absent(self):
        assert validate("agent", agent_fields(permission_mode="  ")) == []

    def test_model_accepts_any_identifier(self):
        assert validate("agent", agent_fields(model="opus")) == []
        assert validate("command", command_fields(model="claude-sonnet-4-20250514")) == []

    def test_attribute_of_another_category(self):
        fields = prompt_fields(model="opus", argument_hint="[file]")
        assert validate("prompt", fields) == [
            Violation("model", UNSUPPORTED_FIELD),
            Violation("argument_hint", UNSUPPORTED_FIELD),
        ]

    def test_blank_foreign_attribute_is_ignored(self):
        fields = prompt_fields(model="", tool_list=None, allowed_tools="  ")
        assert validate("prompt", fields) == []

    def test_unknown_key_reported(self):
        assert validate("prompt", prompt_fields(colour="blue")) == [
            Violation("colour", UNSUPPORTED_FIELD)
        ]

    def test_system_fields_are_not_judged(self):
        fields = prompt_fields(id=3, version=2, created_at="x", updated_at="y")
        assert validate("prompt", fields) == []

    def test_validate_does_not_modify_input(self):
        fields = agent_fields(permission_mode="yolo")
        before = dict(fields)
        validate("agent", fields)
        assert fields == before


class TestTags:

    @pytest.mark.parametrize("tags", [None, "git", ["git", "review"], ("a",), {"b"}])
    def test_accepted_shapes(self, tags):
        assert validate("prompt", prompt_fields(tags=tags)) == []

    @pytest.mark.parametrize("tags", [5, ["git", 3], {"git": True}, b"git"])
    def test_wrong_type(self, tags):
        assert validate("prompt", prompt_fields(tags=tags)) == [
            Violation("tags", INVALID_VALUE)
        ]


class TestRequiredFieldsLookup:

    def test_per_category(self):
        assert required_fields("agent") == ("name", "description", "content")
        assert required_fields("PROMPT") == ("name", "content")

    @pytest.mark.parametrize("category", [None, "", "widget"])
    def test_unknown_category(self, category):
        assert required_fields(category) == ()
