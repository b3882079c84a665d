"""Client for one stdio tool server process.

MCPProcessClient combines a ProcessSupervisor and an RpcCorrelator into
the tool-server contract: list tools, execute a tool, check availability
and stop. It degrades instead of failing: an unreachable server yields
the built-in catalog, and a failed call yields an ``{"error": ...}``
payload that can be handed back to the model as a tool result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from toolbridge.observability import get_logger
from toolbridge.rpc.correlator import RpcCorrelator
from toolbridge.rpc.errors import RpcError
from toolbridge.rpc.process import ProcessSupervisor, ServerProcessState
from toolbridge.tools.base import ToolDefinition
from toolbridge.tools.fallback import fallback_tools
from toolbridge.values import InputNormalizationError, JsonValue, normalize_input, to_json_value

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

    from toolbridge.config import ServerConfig

TOOLS_LIST_METHOD = "tools/list"


class MCPProcessClient:
    """Tool server client over a supervised child process.

    The tool catalog is fetched once and cached until ``refresh_tools``. An
    empty catalog from a reachable server is cached like any other. When
    the server cannot be started the built-in fallback catalog is cached in
    its place. When ``tools/list`` fails on a running server the fallback is
    returned without being cached, so the next call asks again.

    Example:
        >>> client = MCPProcessClient(ServerConfig(name="files", command="npx", args=(...)))
        >>> tools = await client.get_tools()
        >>> result = await client.execute_tool("read_file", {"path": "notes.txt"})
        >>> await client.stop()
    """

    def __init__(self, config: ServerConfig, logger: FilteringBoundLogger | None = None) -> None:
        self.config = config
        base_logger = logger or get_logger(__name__)
        self._log = base_logger.bind(server=config.name)
        self._supervisor = ProcessSupervisor(config, logger=base_logger)
        self._correlator = RpcCorrelator(
            self._supervisor, request_timeout=config.rpc.request_timeout, logger=self._log
        )
        self._supervisor.on_stdout_line = self._correlator.handle_line
        self._supervisor.on_exit = self._correlator.fail_all
        self._tools: list[ToolDefinition] | None = None
        self._tools_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def correlator(self) -> RpcCorrelator:
        return self._correlator

    @property
    def state(self) -> ServerProcessState:
        return self._supervisor.state

    @property
    def is_connected(self) -> bool:
        return self._supervisor.is_running

    async def start(self) -> bool:
        """Start the server process if it is not running."""
        return await self._supervisor.start()

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a raw JSON-RPC request.

        Unlike ``execute_tool``, failures raise ``RpcError`` subclasses.
        """
        return await self._correlator.send(method, params)

    async def get_tools(self) -> list[ToolDefinition]:
        """Return the server's tool catalog, or the fallback catalog.

        Never raises and never returns the fallback as an empty list.
        """
        if self._tools is not None:
            return list(self._tools)

        async with self._tools_lock:
            if self._tools is not None:
                return list(self._tools)

            if not await self.start():
                self._log.warning("tool_discovery_fallback", reason="server could not be started")
                self._tools = self._fallback()
                return list(self._tools)

            try:
                result = await self._correlator.send(TOOLS_LIST_METHOD, {})
            except RpcError as e:
                self._log.warning("tool_discovery_fallback", reason=str(e))
                return self._fallback()

            tools = self._parse_tools(result)
            if tools is None:
                self._log.warning("tool_discovery_fallback", reason="response has no tools list")
                return self._fallback()

            self._tools = tools
            self._log.info("tools_discovered", count=len(tools))
            return list(tools)

    async def refresh_tools(self) -> list[ToolDefinition]:
        """Drop the cached catalog and fetch it again."""
        self._tools = None
        return await self.get_tools()

    async def execute_tool(self, name: str, tool_input: Any = None) -> JsonValue:
        """Execute a tool; the tool name is the JSON-RPC method.

        Args:
            name: Tool name.
            tool_input: Arguments in any form ``normalize_input`` accepts.

        Returns:
            The server's result, or ``{"error": message}`` on any failure.

        Raises:
            ValueError: If ``name`` is empty.
        """
        if not name:
            raise ValueError("tool name must not be empty")

        try:
            params = normalize_input(tool_input)
        except InputNormalizationError as e:
            return {"error": f"Invalid input format: {e}"}

        if not self.is_connected and not await self.start():
            self._log.warning("tool_execution_failed", tool=name, reason="server not started")
            return {"error": "MCP server could not be started"}

        try:
            result = await self._correlator.send(name, params)
        except (RpcError, OSError) as e:
            self._log.warning("tool_execution_failed", tool=name, error=str(e))
            return {"error": f"Error executing tool: {e}"}

        self._log.debug("tool_executed", tool=name)
        return to_json_value(result)

    async def is_available(self) -> bool:
        """Whether the server is connected, starting it if it is not.

        This check is side-effecting: it may spawn the server process.
        """
        if self.is_connected:
            return True
        return await self.start()

    async def stop(self) -> None:
        """Stop the server process. Safe to call more than once."""
        await self._supervisor.stop()

    async def aclose(self) -> None:
        await self.stop()

    async def __aenter__(self) -> MCPProcessClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def _fallback(self) -> list[ToolDefinition]:
        return fallback_tools(self.config.name, self.config.server_type, self.config.tags)

    def _parse_tools(self, result: Any) -> list[ToolDefinition] | None:
        """Decode a ``tools/list`` result, decorating each tool with server metadata.

        Returns None when the result holds no tools list at all.
        """
        if isinstance(result, Mapping):
            entries = result.get("tools")
        else:
            entries = result
        if not isinstance(entries, list):
            return None

        tools: list[ToolDefinition] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                self._log.warning("tool_entry_skipped", entry=repr(entry)[:200])
                continue
            try:
                definition = ToolDefinition.from_dict(entry)
            except ValueError as e:
                self._log.warning("tool_entry_skipped", error=str(e))
                continue
            tools.append(
                definition.with_server_defaults(
                    self.config.name, self.config.server_type, self.config.tags
                )
            )
        return tools
