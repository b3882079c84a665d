"""JSON-RPC 2.0 message types for line-delimited stdio transport.

One message is one line of UTF-8 JSON. Messages never contain raw
newlines; ``json.dumps`` escapes any inside strings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

_MISSING: Any = object()


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. ``id`` is None for notifications."""

    method: str
    params: dict[str, Any] | list[Any] | None = None
    id: int | str | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        if self.id is not None:
            message["id"] = self.id
        return message

    def to_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcRequest:
        method = data.get("method")
        if not isinstance(method, str):
            raise ValueError("request has no method")
        return cls(method=method, params=data.get("params"), id=data.get("id"))


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response.

    ``result`` may legitimately be null, so presence is tracked separately
    in ``has_result``.
    """

    id: int | str | None
    result: Any = None
    error: dict[str, Any] | None = None
    has_result: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error
        else:
            message["result"] = self.result
        return message

    def to_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JsonRpcResponse:
        result = data.get("result", _MISSING)
        error = data.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"code": None, "message": str(error)}
        return cls(
            id=data.get("id"),
            result=None if result is _MISSING else result,
            error=error,
            has_result=result is not _MISSING,
        )

    @classmethod
    def success(cls, id: int | str | None, result: Any) -> JsonRpcResponse:
        return cls(id=id, result=result, has_result=True)

    @classmethod
    def failure(
        cls, id: int | str | None, code: int, message: str, data: Any = None
    ) -> JsonRpcResponse:
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return cls(id=id, error=error)


def parse_line(line: str) -> dict[str, Any] | None:
    """Parse one transport line into a JSON object.

    Returns None for blank lines, non-JSON text (such as a server's startup
    banner) and JSON values that are not objects.
    """
    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    try:
        message = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


def normalize_id(value: Any) -> int | str | None:
    """Return a response id in the form requests are keyed by.

    Servers occasionally echo integer ids as strings.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value) if value.isascii() and value.isdigit() else value
    return None
