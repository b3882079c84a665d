"""Tests for JSON value normalization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import pytest
from pydantic import BaseModel

from toolbridge.values import InputNormalizationError, normalize_input, to_json_value


class PathArgs(BaseModel):
    path: str
    recursive: bool = False


@dataclass
class SearchArgs:
    pattern: str
    limit: int


class TestNormalizeInput:
    """Tests for normalize_input."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, {}),
            ("", {}),
            ({"a": 1}, {"a": 1}),
            ('{"a": [1, {"b": null}]}', {"a": [1, {"b": None}]}),
            (b'{"a": true}', {"a": True}),
            (PathArgs(path="x"), {"path": "x", "recursive": False}),
            (SearchArgs(pattern="*.py", limit=3), {"pattern": "*.py", "limit": 3}),
        ],
        ids=["none", "blank", "dict", "json_text", "bytes", "model", "dataclass"],
    )
    def test_accepted(self, value: object, expected: dict) -> None:
        """Supported representations become plain dicts."""
        assert normalize_input(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["not json", "[1, 2]", 42, ["a"], {"when": date(2024, 1, 1)}],
        ids=["bad_json", "json_array", "int", "list", "non_json_value"],
    )
    def test_rejected(self, value: object) -> None:
        """Input that is not a JSON object raises."""
        with pytest.raises(InputNormalizationError):
            normalize_input(value)

    def test_returns_copy(self) -> None:
        """The caller's mapping is not returned as-is."""
        original = {"a": 1}

        result = normalize_input(original)
        result["b"] = 2

        assert original == {"a": 1}


class TestToJsonValue:
    """Tests for to_json_value."""

    def test_json_values_pass_through(self) -> None:
        """JSON-compatible values are unchanged."""
        assert to_json_value({"a": [1, 2.5, "x", None, True]}) == {"a": [1, 2.5, "x", None, True]}

    def test_model(self) -> None:
        """Models are dumped in JSON mode."""
        assert to_json_value(PathArgs(path="x")) == {"path": "x", "recursive": False}

    def test_unrepresentable_stringified(self) -> None:
        """Other values fall back to str()."""
        assert to_json_value(date(2024, 1, 1)) == "2024-01-01"
