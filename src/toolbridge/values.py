"""Recursive JSON values exchanged with tools.

Tool input and output cross process boundaries, so both are modelled as
pydantic's recursive ``JsonValue`` rather than arbitrary Python objects.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, JsonValue, TypeAdapter, ValidationError

__all__ = [
    "InputNormalizationError",
    "JsonObject",
    "JsonValue",
    "normalize_input",
    "to_json_value",
]

JsonObject = dict[str, JsonValue]

_OBJECT_ADAPTER: TypeAdapter[JsonObject] = TypeAdapter(JsonObject)
_VALUE_ADAPTER: TypeAdapter[JsonValue] = TypeAdapter(JsonValue)


class InputNormalizationError(ValueError):
    """Raised when tool input cannot be represented as a JSON object."""


def normalize_input(value: Any) -> JsonObject:
    """Convert tool input into a canonical key to value map.

    Accepts a mapping, a JSON object encoded as text, a pydantic model,
    a dataclass instance, or None (treated as no arguments).

    Args:
        value: Tool input in any supported representation.

    Returns:
        A new dict whose values are JSON values.

    Raises:
        InputNormalizationError: If the input is not object-shaped or holds
            values that have no JSON representation.

    Examples:
        >>> normalize_input('{"path": "a.txt"}')
        {'path': 'a.txt'}
        >>> normalize_input(None)
        {}
    """
    if value is None:
        return {}

    if isinstance(value, str | bytes | bytearray):
        text = value.decode() if isinstance(value, bytes | bytearray) else value
        if not text.strip():
            return {}
        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            raise InputNormalizationError(f"input is not valid JSON: {e}") from e
    elif isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)

    if not isinstance(value, Mapping):
        raise InputNormalizationError(
            f"input must be an object, got {type(value).__name__}"
        )

    try:
        return _OBJECT_ADAPTER.validate_python(dict(value))
    except ValidationError as e:
        raise InputNormalizationError(f"input is not JSON-compatible: {e}") from e


def to_json_value(value: Any) -> JsonValue:
    """Coerce a tool result into a JSON value.

    Values that pydantic cannot represent are rendered with ``str()``.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    try:
        return _VALUE_ADAPTER.validate_python(value)
    except ValidationError:
        return str(value)
