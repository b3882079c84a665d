"""Tool registry: the map from tool names to definitions and handlers.

Local tools carry an in-process handler. Server tools carry no handler;
their definitions name the owning server in ``server_name`` metadata and
are routed by the dispatcher.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from typing import Any

from toolbridge.observability import get_logger
from toolbridge.tools.base import Tool, ToolDefinition
from toolbridge.values import JsonObject, JsonValue

log = get_logger(__name__)

ToolHandler = Callable[[JsonObject], JsonValue | Awaitable[JsonValue]]


class ToolRegistry:
    """Registry of local and server-published tools.

    A later registration under an existing name replaces the earlier one.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ToolDefinition] = {}
        self._handlers: dict[str, ToolHandler] = {}

    def register_tool(self, definition: ToolDefinition, handler: ToolHandler | None = None) -> None:
        """Register a tool definition, with a handler for local tools.

        Raises:
            ValueError: If the definition has an empty name, or neither a
                handler nor ``server_name`` metadata.
        """
        if not definition.name:
            raise ValueError("tool name must not be empty")
        if handler is None and definition.server_name is None:
            raise ValueError(f"tool '{definition.name}' needs a handler or server_name metadata")

        if definition.name in self._definitions:
            log.warning("tool_replaced", tool=definition.name)

        self._definitions[definition.name] = definition
        if handler is not None:
            self._handlers[definition.name] = handler
        else:
            self._handlers.pop(definition.name, None)

    def register_local(self, tool: Tool) -> None:
        """Register an object implementing the Tool protocol."""
        if not isinstance(tool, Tool):
            raise TypeError(f"{type(tool).__name__} does not implement the Tool protocol")
        self.register_tool(tool.definition, tool.execute)

    def register_server_tools(self, server_name: str, definitions: Iterable[ToolDefinition]) -> int:
        """Replace the tools owned by ``server_name`` with ``definitions``.

        Each definition is stamped with ``server_name`` metadata.

        Returns:
            Number of tools registered.
        """
        self.unregister_server(server_name)
        count = 0
        for definition in definitions:
            metadata = {**definition.metadata, "server_name": server_name}
            self.register_tool(replace(definition, metadata=metadata))
            count += 1
        log.info("server_tools_registered", server=server_name, count=count)
        return count

    def unregister_server(self, server_name: str) -> list[str]:
        """Remove every tool owned by ``server_name``.

        Returns:
            Names of the removed tools.
        """
        removed = [
            name
            for name, definition in self._definitions.items()
            if definition.server_name == server_name
        ]
        for name in removed:
            self.unregister_tool(name)
        return removed

    def unregister_tool(self, name: str) -> bool:
        self._handlers.pop(name, None)
        return self._definitions.pop(name, None) is not None

    def get_definition(self, name: str) -> ToolDefinition | None:
        return self._definitions.get(name)

    def get_handler(self, name: str) -> ToolHandler | None:
        return self._handlers.get(name)

    def tool_exists(self, name: str) -> bool:
        return name in self._definitions

    def server_for(self, name: str) -> str | None:
        """Return the server that owns tool ``name``, None for local or unknown tools."""
        definition = self._definitions.get(name)
        return definition.server_name if definition else None

    def enable_tool(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable_tool(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def is_enabled(self, name: str) -> bool:
        definition = self._definitions.get(name)
        return definition is not None and definition.enabled

    def tools(self) -> list[ToolDefinition]:
        """Return all registered definitions, enabled or not."""
        return list(self._definitions.values())

    def enabled_tools(self) -> list[ToolDefinition]:
        return [d for d in self._definitions.values() if d.enabled]

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        definition = self._definitions.get(name)
        if definition is None:
            return False
        self._definitions[name] = replace(definition, enabled=enabled)
        return True

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: Any) -> bool:
        return name in self._definitions
