"""Tests for src.core.tool_args — argument validation and declared schemas."""

import pytest

from src.core import tool_args as ta
from src.core.errors import ToolValidationError


class TestValidateArgs:
    def test_valid(self):
        args = ta.validate_args(ta.CreateTaskArgs, {"title": "  Tondre  ", "zone": "Jardin"})
        assert args.title == "Tondre"
        assert args.zone == "Jardin"

    def test_none_is_empty(self):
        assert isinstance(ta.validate_args(ta.EmptyArgs, None), ta.EmptyArgs)

    def test_first_issue_names_field(self):
        with pytest.raises(ToolValidationError, match=r"^title:"):
            ta.validate_args(ta.CreateTaskArgs, {"title": "x"})

    def test_extra_field_rejected(self):
        with pytest.raises(ToolValidationError, match="^foo:"):
            ta.validate_args(ta.EmptyArgs, {"foo": 1})

    def test_bad_enum(self):
        with pytest.raises(ToolValidationError, match="^status:"):
            ta.validate_args(ta.UpdateTaskStatusArgs, {"taskId": 1, "status": "FINI"})

    def test_negative_amount(self):
        with pytest.raises(ToolValidationError, match="^amount:"):
            ta.validate_args(
                ta.CreateBudgetEntryArgs, {"type": "EXPENSE", "label": "X", "amount": -3},
            )

    def test_provided_keeps_explicit_nulls(self):
        args = ta.validate_args(ta.UpdateTaskArgs, {"taskId": 3, "zone": None})
        assert args.provided() == {"taskId": 3, "zone": None}


class TestJsonSchema:
    def test_strict_object(self):
        schema = ta.json_schema(ta.CreateTaskArgs)
        assert schema["type"] == "object"
        assert schema["additionalProperties"] is False
        assert schema["required"] == ["title"]

    def test_no_titles_and_optional_unwrapped(self):
        schema = ta.json_schema(ta.CreateTaskArgs)
        assert "title" not in {k for k in schema if k != "properties"}
        due = schema["properties"]["dueDate"]
        assert "title" not in due
        assert "anyOf" not in due
        assert due["type"] == "string"
        assert due["pattern"] == ta.DATE_PATTERN

    def test_literal_becomes_enum(self):
        schema = ta.json_schema(ta.UpdateTaskStatusArgs)
        assert schema["properties"]["status"]["enum"] == ["TODO", "IN_PROGRESS", "DONE"]

    def test_empty_args_has_properties(self):
        schema = ta.json_schema(ta.EmptyArgs)
        assert schema["properties"] == {}
