"""Base types and protocols for bridge tools.

This module defines the core abstractions for tool calling:
- ToolDefinition: schema-described tool published by a server or registered locally
- ToolInvocation: a tool call extracted from model output
- Tool: protocol for in-process tools
- ToolServer: protocol for out-of-process tool server clients
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, runtime_checkable

from toolbridge.values import JsonObject, JsonValue  # noqa: TC001 - used in dataclass fields


def _empty_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


@dataclass
class ToolDefinition:
    """Definition of a tool that can be offered to a model.

    Attributes:
        name: Unique tool identifier (e.g., "read_file", "get_date_time").
        description: Concise description for the model to understand when to use it.
        input_schema: JSON Schema object with ``properties`` and ``required``.
        tags: Category labels.
        metadata: Open map. Remote tools carry ``server_name`` and ``server_type``.
        enabled: Whether the tool is offered to the model.

    Example:
        >>> ToolDefinition(
        ...     name="read_file",
        ...     description="Read the complete contents of a file.",
        ...     input_schema={
        ...         "type": "object",
        ...         "properties": {"path": {"type": "string"}},
        ...         "required": ["path"],
        ...     },
        ...     tags=["Filesystem"],
        ... )
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=_empty_schema)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @property
    def server_name(self) -> str | None:
        """Name of the tool server that owns this tool, None for local tools."""
        value = self.metadata.get("server_name")
        return str(value) if value else None

    @property
    def required_parameters(self) -> list[str]:
        return list(self.input_schema.get("required", []))

    def with_server_defaults(
        self, server_name: str, server_type: str, tags: list[str] | tuple[str, ...]
    ) -> ToolDefinition:
        """Return a copy carrying server metadata and tags where missing.

        Existing ``server_name``/``server_type`` metadata and non-empty tag
        lists published by the server are preserved.
        """
        metadata = dict(self.metadata)
        metadata.setdefault("server_name", server_name)
        metadata.setdefault("server_type", server_type)
        return replace(
            self,
            metadata=metadata,
            tags=list(self.tags) if self.tags else list(tags),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``tools/list`` wire shape."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ToolDefinition:
        """Create a definition from a server-published tool entry.

        Servers disagree on the schema key; ``inputSchema``, ``input_schema``,
        ``parameters`` and ``input`` are all accepted, in that order.

        Raises:
            ValueError: If the entry has no name.
        """
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ValueError(f"tool entry has no name: {dict(data)!r}")

        schema: Any = None
        for key in ("inputSchema", "input_schema", "parameters", "input"):
            if isinstance(data.get(key), Mapping):
                schema = dict(data[key])
                break

        return cls(
            name=name,
            description=str(data.get("description") or ""),
            input_schema=schema if schema is not None else _empty_schema(),
            tags=[str(t) for t in data.get("tags") or []],
            metadata=dict(data.get("metadata") or {}),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call extracted from model output.

    Attributes:
        tool_name: Name of the tool being called.
        parameters: Arguments for the call, possibly nested.
        preamble: Text the model emitted before the call.
        raw_response: Full response text seen when the call was extracted.
        server_name: Owning tool server, when known from tool metadata.
        postamble: Text following the call, if any had arrived.
    """

    tool_name: str
    parameters: JsonObject = field(default_factory=dict)
    preamble: str = ""
    raw_response: str = ""
    server_name: str | None = None
    postamble: str = ""

    def with_server(self, server_name: str | None) -> ToolInvocation:
        return replace(self, server_name=server_name)


@runtime_checkable
class Tool(Protocol):
    """Protocol for in-process tools.

    This protocol is runtime-checkable, allowing isinstance() checks.

    Example:
        >>> class EchoTool:
        ...     @property
        ...     def definition(self) -> ToolDefinition:
        ...         return ToolDefinition(name="echo", description="Echo input back.")
        ...
        ...     def execute(self, arguments: JsonObject) -> JsonValue:
        ...         return arguments
    """

    @property
    def definition(self) -> ToolDefinition:
        """Return the tool definition offered to the model."""
        ...

    def execute(self, arguments: JsonObject) -> JsonValue:
        """Execute the tool with given arguments.

        Args:
            arguments: Normalized arguments from the extracted call.

        Returns:
            JSON result sent back to the model.
        """
        ...


@runtime_checkable
class ToolServer(Protocol):
    """Protocol for clients of out-of-process tool servers.

    ``execute_tool`` never raises for server-side failures; it returns an
    ``{"error": message}`` payload instead.
    """

    @property
    def name(self) -> str:
        """Server name, matched against ``server_name`` tool metadata."""
        ...

    async def get_tools(self) -> list[ToolDefinition]:
        """Return the server's tool catalog."""
        ...

    async def execute_tool(self, name: str, tool_input: Any) -> JsonValue:
        """Execute a tool on the server."""
        ...

    async def is_available(self) -> bool:
        """Report whether the server is reachable, starting it if needed."""
        ...

    async def stop(self) -> None:
        """Stop the server. Safe to call more than once."""
        ...
