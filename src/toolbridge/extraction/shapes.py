"""Recognised tool-call payload shapes.

Models emit tool calls in several de-facto formats. Each matcher takes a
parsed JSON object and returns the tool name and parameters, or None when
the object is not in its shape. ``SHAPES`` lists them in priority order;
the first match wins.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from toolbridge.values import JsonObject

# Values of "type" that describe data rather than name a tool.
RESERVED_TYPES = frozenset(
    {
        "tool_use",
        "text",
        "object",
        "array",
        "string",
        "number",
        "integer",
        "boolean",
        "null",
        "function",
    }
)


@dataclass(frozen=True)
class ShapeMatch:
    """A payload recognised as a tool call."""

    tool_name: str
    parameters: JsonObject
    shape: str


def _name(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _params(payload: dict[str, Any], *keys: str) -> JsonObject | None:
    """Return the first present parameter object under ``keys``.

    A missing or null value means no arguments. A JSON string holding an
    object is decoded. Anything else disqualifies the payload.
    """
    for key in keys:
        if key not in payload:
            continue
        value = payload[key]
        if value is None:
            return {}
        if isinstance(value, str):
            try:
                value = json.loads(value) if value.strip() else {}
            except json.JSONDecodeError:
                return None
        return value if isinstance(value, dict) else None
    return {}


def match_tool_use_envelope(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"type": "tool_use", "tool": <name>, "tool_input": {...}}``"""
    if payload.get("type") != "tool_use":
        return None
    name = _name(payload.get("tool"))
    params = _params(payload, "tool_input", "input")
    if name is None or params is None:
        return None
    return ShapeMatch(name, params, "tool_use")


def match_type_as_name(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"type": <name>, "tool_input": {...}}``"""
    if "tool_input" not in payload:
        return None
    name = _name(payload.get("type"))
    if name is None or name in RESERVED_TYPES:
        return None
    params = _params(payload, "tool_input")
    if params is None:
        return None
    return ShapeMatch(name, params, "type_as_name")


def match_function_call(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"function": <name>, "parameters": {...}}``"""
    name = _name(payload.get("function"))
    if name is None:
        return None
    params = _params(payload, "parameters", "arguments")
    if params is None:
        return None
    return ShapeMatch(name, params, "function")


def match_bare_type(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"type": <name>}`` with no other keys: a call without arguments."""
    if set(payload) != {"type"}:
        return None
    name = _name(payload["type"])
    if name is None or name in RESERVED_TYPES:
        return None
    return ShapeMatch(name, {}, "bare_type")


def match_tool_parameters(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"tool": <name>, "parameters": {...}}``, as written inside ``<tool_call>`` tags."""
    if "type" in payload:
        return None
    name = _name(payload.get("tool"))
    if name is None:
        return None
    params = _params(payload, "parameters", "tool_input", "arguments")
    if params is None:
        return None
    return ShapeMatch(name, params, "tool_parameters")


def match_name_arguments(payload: dict[str, Any]) -> ShapeMatch | None:
    """``{"name": <name>, "arguments": {...}}``; arguments may be a JSON string."""
    if "arguments" not in payload and "parameters" not in payload:
        return None
    name = _name(payload.get("name"))
    if name is None:
        return None
    params = _params(payload, "arguments", "parameters")
    if params is None:
        return None
    return ShapeMatch(name, params, "name_arguments")


Matcher = Callable[[dict[str, Any]], ShapeMatch | None]

SHAPES: tuple[Matcher, ...] = (
    match_tool_use_envelope,
    match_type_as_name,
    match_function_call,
    match_bare_type,
    match_tool_parameters,
    match_name_arguments,
)


def match_shape(payload: Any) -> ShapeMatch | None:
    """Return the first shape matching ``payload``, or None."""
    if not isinstance(payload, dict):
        return None
    for matcher in SHAPES:
        match = matcher(payload)
        if match is not None:
            return match
    return None
