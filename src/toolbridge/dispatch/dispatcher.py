"""Tool dispatcher: execute an extracted invocation wherever its tool lives.

Resolution order:
1. A server named by the invocation, or by the tool's ``server_name``
   metadata, when that server is registered with the dispatcher.
2. A local handler in the tool registry.
3. Otherwise the tool is not found.

Every outcome is a JSON value. Failures become ``{"error": message}`` so
they can be returned to the model as the tool result.
"""

from __future__ import annotations

import inspect
import time
from typing import TYPE_CHECKING, Any

from toolbridge.observability import get_logger
from toolbridge.tools.base import ToolInvocation
from toolbridge.values import InputNormalizationError, JsonValue, normalize_input, to_json_value

if TYPE_CHECKING:
    from collections.abc import Iterable

    from structlog.typing import FilteringBoundLogger

    from toolbridge.observability import ToolOperationLogger
    from toolbridge.tools.base import ToolServer
    from toolbridge.tools.registry import ToolRegistry


def error_message(result: JsonValue) -> str | None:
    """Return the error text of an ``{"error": ...}`` result, else None."""
    if isinstance(result, dict) and "error" in result and result["error"] is not None:
        return str(result["error"])
    return None


class ToolDispatcher:
    """Execute tool invocations against local handlers and tool servers."""

    def __init__(
        self,
        registry: ToolRegistry,
        servers: Iterable[ToolServer] = (),
        operation_log: ToolOperationLogger | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.registry = registry
        self.operation_log = operation_log
        self._log = logger or get_logger(__name__)
        self._servers: dict[str, ToolServer] = {}
        for server in servers:
            self.register_server(server)

    @property
    def servers(self) -> dict[str, ToolServer]:
        return dict(self._servers)

    def register_server(self, server: ToolServer) -> None:
        self._servers[server.name] = server

    def unregister_server(self, name: str) -> ToolServer | None:
        return self._servers.pop(name, None)

    def resolve(self, invocation: ToolInvocation) -> ToolInvocation:
        """Fill in the owning server from tool metadata when the invocation lacks one."""
        if invocation.server_name is not None:
            return invocation
        server_name = self.registry.server_for(invocation.tool_name)
        return invocation.with_server(server_name) if server_name else invocation

    async def call(
        self, tool_name: str, arguments: Any = None, server_name: str | None = None
    ) -> JsonValue:
        """Dispatch a call given by name and arguments.

        Returns ``{"error": ...}`` when the arguments are not an object.
        """
        try:
            parameters = normalize_input(arguments)
        except InputNormalizationError as e:
            return {"error": f"Invalid input format: {e}"}
        return await self.dispatch(
            ToolInvocation(tool_name=tool_name, parameters=parameters, server_name=server_name)
        )

    async def dispatch(self, invocation: ToolInvocation) -> JsonValue:
        """Execute ``invocation`` and return its result.

        Never raises for tool failures; only cancellation and interpreter
        exit propagate.

        Raises:
            ValueError: If the invocation has no tool name.
        """
        if not invocation.tool_name:
            raise ValueError("tool name must not be empty")

        invocation = self.resolve(invocation)
        name = invocation.tool_name
        started = time.perf_counter()

        try:
            result = await self._execute(invocation)
        except Exception as e:
            self._log.warning("tool_dispatch_failed", tool=name, error=str(e), exc_info=True)
            result = {"error": f"Error executing tool '{name}': {e}"}

        duration = time.perf_counter() - started
        error = error_message(result)
        if error is None:
            self._log.info("tool_dispatched", tool=name, server=invocation.server_name)
        else:
            self._log.info(
                "tool_dispatch_error", tool=name, server=invocation.server_name, error=error
            )

        if self.operation_log is not None:
            self.operation_log.log(
                self.operation_log.create_entry(
                    tool=name,
                    input=dict(invocation.parameters),
                    result=result,
                    duration_seconds=round(duration, 4),
                    server_name=invocation.server_name,
                    error=error,
                )
            )
        return result

    async def _execute(self, invocation: ToolInvocation) -> JsonValue:
        name = invocation.tool_name
        definition = self.registry.get_definition(name)
        if definition is not None and not definition.enabled:
            return {"error": f"Tool '{name}' is disabled"}

        server = self._servers.get(invocation.server_name) if invocation.server_name else None
        if server is not None:
            return await server.execute_tool(name, dict(invocation.parameters))

        handler = self.registry.get_handler(name)
        if handler is None:
            self._log.warning("tool_not_found", tool=name, server=invocation.server_name)
            return {"error": f"Tool '{name}' not found"}

        result = handler(normalize_input(dict(invocation.parameters)))
        if inspect.isawaitable(result):
            result = await result
        return to_json_value(result)
