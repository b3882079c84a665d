"""In-process tools available without any tool server.

This module provides local tools registered with the ToolRegistry:
- DateTimeTool: current date and time, optionally in a named timezone
- CalculatorTool: arithmetic over numbers, without eval()
- ReadFileTool / WriteFileTool: file access confined to allowed directories

Tools never raise for bad input. Failures come back as ``{"error": message}``
so the model can read them as a tool result.
"""

from __future__ import annotations

import ast
import math
import operator
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from toolbridge.tools.base import Tool, ToolDefinition
from toolbridge.tools.registry import ToolRegistry
from toolbridge.values import JsonObject, JsonValue

# Maximum characters returned by read_file
MAX_READ_CHARS = 100_000

_BINARY_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sqrt": math.sqrt,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "exp": math.exp,
}
_CONSTANTS = {"pi": math.pi, "e": math.e}
MAX_EXPONENT = 1000


class DateTimeTool:
    """Report the current date and time."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="get_date_time",
            description="Get the current date and time, optionally in a given IANA timezone.",
            input_schema={
                "type": "object",
                "properties": {
                    "timezone": {
                        "type": "string",
                        "description": "IANA timezone such as 'Europe/Amsterdam' (default: UTC)",
                    },
                },
                "required": [],
            },
            tags=["Utility", "Time"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        timezone = arguments.get("timezone") or "UTC"
        if not isinstance(timezone, str):
            return {"error": "timezone must be a string"}
        try:
            tz = UTC if timezone.upper() == "UTC" else ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return {"error": f"Unknown timezone: {timezone}"}

        now = datetime.now(tz)
        return {
            "current_time": now.isoformat(),
            "date": now.date().isoformat(),
            "time": now.strftime("%H:%M:%S"),
            "weekday": now.strftime("%A"),
            "timezone": timezone,
            "unix_timestamp": int(now.timestamp()),
        }


class CalculatorTool:
    """Evaluate an arithmetic expression.

    The expression is parsed with ``ast`` and only numeric literals,
    arithmetic operators, ``pi``/``e`` and a small set of math functions
    are evaluated.
    """

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="calculate",
            description=(
                "Evaluate an arithmetic expression, e.g. '2 * (3 + 4)' or 'sqrt(16)'. "
                "Supports + - * / // % **, pi, e and sqrt, abs, round, min, max, "
                "sin, cos, tan, log, exp."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "expression": {"type": "string", "description": "Expression to evaluate"},
                },
                "required": ["expression"],
            },
            tags=["Utility", "Math"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        expression = arguments.get("expression")
        if not isinstance(expression, str) or not expression.strip():
            return {"error": "expression is required"}
        try:
            tree = ast.parse(expression.strip(), mode="eval")
            result = self._evaluate(tree.body)
        except ZeroDivisionError:
            return {"error": "Division by zero"}
        except (SyntaxError, ValueError, TypeError, OverflowError) as e:
            return {"error": f"Invalid expression: {e}"}

        if isinstance(result, float) and result.is_integer() and abs(result) < 2**53:
            result = int(result)
        return {"expression": expression, "result": result}

    def _evaluate(self, node: ast.expr) -> Any:
        if isinstance(node, ast.Constant) and type(node.value) in (int, float):
            return node.value
        if isinstance(node, ast.Name) and node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            left = self._evaluate(node.left)
            right = self._evaluate(node.right)
            if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
                raise ValueError("exponent too large")
            return _BINARY_OPS[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](self._evaluate(node.operand))
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Name)
            and node.func.id in _FUNCTIONS
            and not node.keywords
        ):
            args = [self._evaluate(arg) for arg in node.args]
            return _FUNCTIONS[node.func.id](*args)
        raise ValueError(f"unsupported syntax: {ast.dump(node)[:60]}")


class _FileTool:
    """Shared path confinement for the file tools."""

    def __init__(self, allowed_dirs: Sequence[Path]) -> None:
        self.allowed_dirs = [Path(d).resolve() for d in allowed_dirs]

    def _resolve(self, raw: Any) -> Path | str:
        """Resolve ``raw`` inside an allowed directory, or return an error message."""
        if not isinstance(raw, str) or not raw.strip():
            return "path is required"
        if not self.allowed_dirs:
            return "No allowed directories configured"

        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self.allowed_dirs[0] / candidate
        resolved = candidate.resolve()
        for root in self.allowed_dirs:
            if resolved == root or resolved.is_relative_to(root):
                return resolved
        return f"Access denied: {raw} is outside the allowed directories"


class ReadFileTool(_FileTool):
    """Read a text file inside the allowed directories."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="read_file",
            description=(
                "Read the complete contents of a text file. "
                "Only works within allowed directories."
            ),
            input_schema={
                "type": "object",
                "properties": {"path": {"type": "string", "description": "Path to the file"}},
                "required": ["path"],
            },
            tags=["Filesystem"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        path = self._resolve(arguments.get("path"))
        if isinstance(path, str):
            return {"error": path}
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return {"error": f"File not found: {arguments.get('path')}"}
        except OSError as e:
            return {"error": f"Could not read file: {e}"}

        truncated = len(content) > MAX_READ_CHARS
        return {
            "path": str(path),
            "content": content[:MAX_READ_CHARS],
            "truncated": truncated,
        }


class WriteFileTool(_FileTool):
    """Write a text file inside the allowed directories."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="write_file",
            description=(
                "Create a new file or overwrite an existing file with new content. "
                "Only works within allowed directories."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file"},
                    "content": {"type": "string", "description": "Content to write"},
                },
                "required": ["path", "content"],
            },
            tags=["Filesystem"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        path = self._resolve(arguments.get("path"))
        if isinstance(path, str):
            return {"error": path}
        content = arguments.get("content")
        if not isinstance(content, str):
            return {"error": "content must be a string"}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            return {"error": f"Could not write file: {e}"}
        return {"path": str(path), "bytes_written": len(content.encode("utf-8"))}


def builtin_tools(allowed_dirs: Sequence[Path] = ()) -> list[Tool]:
    """Return the built-in tools. File tools are included only with allowed directories."""
    tools: list[Tool] = [DateTimeTool(), CalculatorTool()]
    if allowed_dirs:
        tools.extend([ReadFileTool(allowed_dirs), WriteFileTool(allowed_dirs)])
    return tools


def register_builtin_tools(registry: ToolRegistry, allowed_dirs: Sequence[Path] = ()) -> int:
    """Register the built-in tools with ``registry``.

    Returns:
        Number of tools registered.
    """
    tools = builtin_tools(allowed_dirs)
    for tool in tools:
        registry.register_local(tool)
    return len(tools)
