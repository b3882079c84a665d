"""Stdio JSON-RPC tool server.

A tool server is a standalone process that reads one JSON-RPC request per
line from stdin and writes one response per line to stdout. Tools are
called with the tool name as the method. ``tools/list`` returns the
catalog, and ``tools/call`` with ``{"name", "arguments"}`` is accepted too.

To create a tool server::

    from toolbridge.rpc.server import StdioToolServer

    server = StdioToolServer("my-server")
    server.register(MyTool())
    server.run()

Logs go to stderr so stdout only ever carries protocol messages.
"""

from __future__ import annotations

import inspect
import json
import sys
from typing import IO, TYPE_CHECKING, Any

from toolbridge.observability import get_logger
from toolbridge.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcResponse,
)
from toolbridge.tools.base import Tool
from toolbridge.values import to_json_value

if TYPE_CHECKING:
    from toolbridge.tools.base import ToolDefinition

log = get_logger(__name__)


class MethodNotFoundError(LookupError):
    """Raised when a request names no known method or tool."""


class StdioToolServer:
    """Serve registered tools over line-delimited JSON-RPC on stdio.

    Built-in methods:
    - ``tools/list``: ``{"tools": [definition, ...]}``
    - ``tools/call``: ``{"name": tool, "arguments": {...}}``
    - ``ping``: health check
    """

    def __init__(self, name: str, server_type: str = "custom") -> None:
        self.name = name
        self.server_type = server_type
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool under its definition's name."""
        if not isinstance(tool, Tool):
            raise TypeError(f"{type(tool).__name__} does not implement the Tool protocol")
        name = tool.definition.name
        if not name:
            raise ValueError(f"{type(tool).__name__} has no name")
        self._tools[name] = tool

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        definitions = []
        for tool in self._tools.values():
            definition = tool.definition
            definition.metadata.setdefault("server_name", self.name)
            definition.metadata.setdefault("server_type", self.server_type)
            definitions.append(definition)
        return definitions

    def run(self, stdin: IO[str] | None = None, stdout: IO[str] | None = None) -> None:
        """Serve requests until stdin closes."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        log.info("tool_server_ready", server=self.name, tools=self.tool_names)
        # Plain stderr banner; hosts recognise it as an informational line.
        print(f"{self.name} tool server running on stdio", file=sys.stderr, flush=True)

        for line in stdin:
            response = self.handle_line(line)
            if response is not None:
                stdout.write(response.to_line())
                stdout.flush()

        log.info("tool_server_stdin_closed", server=self.name)

    def handle_line(self, line: str) -> JsonRpcResponse | None:
        """Handle one request line. Returns None for blank lines and notifications."""
        line = line.strip()
        if not line:
            return None

        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            return JsonRpcResponse.failure(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            return JsonRpcResponse.failure(None, INVALID_REQUEST, "Invalid request")

        request_id = request.get("id")
        method = request["method"]
        params = request.get("params")
        if params is None:
            params = {}

        try:
            result = self.dispatch(method, params)
        except MethodNotFoundError as e:
            response = JsonRpcResponse.failure(request_id, METHOD_NOT_FOUND, str(e))
        except (TypeError, ValueError) as e:
            response = JsonRpcResponse.failure(request_id, INVALID_PARAMS, str(e))
        except Exception as e:
            log.exception("tool_server_method_failed", method=method)
            response = JsonRpcResponse.failure(request_id, INTERNAL_ERROR, str(e))
        else:
            response = JsonRpcResponse.success(request_id, result)

        return response if request_id is not None else None

    def dispatch(self, method: str, params: Any) -> Any:
        """Route a method call to the matching tool.

        Raises:
            MethodNotFoundError: For an unknown method or tool.
            TypeError: If params are not an object.
        """
        if method == "ping":
            return {"status": "ok", "tools": self.tool_names}
        if method == "tools/list":
            return {"tools": [d.to_dict() for d in self.definitions()]}
        if method == "tools/call":
            if not isinstance(params, dict):
                raise TypeError("tools/call params must be an object")
            return self._call(str(params.get("name", "")), params.get("arguments") or {})
        return self._call(method, params)

    def _call(self, name: str, arguments: Any) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise MethodNotFoundError(f"Unknown method: '{name}'")
        if not isinstance(arguments, dict):
            raise TypeError(f"params for '{name}' must be an object")
        result = tool.execute(arguments)
        if inspect.isawaitable(result):
            raise TypeError(f"tool '{name}' is asynchronous; stdio servers run tools synchronously")
        return to_json_value(result)
