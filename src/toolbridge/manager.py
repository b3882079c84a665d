"""Lifecycle of the configured tool servers.

ServerManager creates one MCPProcessClient per configured server, starts
tool discovery as a background task, and registers each server's tools
with the registry as they arrive. Callers wait for discovery only as long
as they choose to; a slow server never blocks startup.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

from toolbridge.observability import get_logger
from toolbridge.rpc.client import MCPProcessClient

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from toolbridge.config import BridgeConfig, ServerConfig
    from toolbridge.dispatch import ToolDispatcher
    from toolbridge.tools.base import ToolDefinition
    from toolbridge.tools.registry import ToolRegistry

ClientFactory = Callable[["ServerConfig"], MCPProcessClient]


class ServerManager:
    """Register, discover and stop the configured tool servers."""

    def __init__(
        self,
        config: BridgeConfig,
        registry: ToolRegistry,
        dispatcher: ToolDispatcher,
        client_factory: ClientFactory | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.dispatcher = dispatcher
        self._log = logger or get_logger(__name__)
        self._client_factory = client_factory or (
            lambda server: MCPProcessClient(server, logger=self._log)
        )
        self._clients: dict[str, MCPProcessClient] = {}
        self._discovery: asyncio.Task[None] | None = None

    @property
    def clients(self) -> dict[str, MCPProcessClient]:
        return dict(self._clients)

    def get_client(self, name: str) -> MCPProcessClient | None:
        return self._clients.get(name)

    def register_server(self, server: ServerConfig) -> MCPProcessClient:
        """Create a client for ``server`` and route its tools through the dispatcher.

        Raises:
            ValueError: If a server with the same name is already registered.
        """
        if server.name in self._clients:
            raise ValueError(f"server '{server.name}' is already registered")
        client = self._client_factory(server)
        self._clients[server.name] = client
        self.dispatcher.register_server(client)
        self._log.info("server_registered", server=server.name, command=server.command)
        return client

    def register_all(self) -> list[MCPProcessClient]:
        """Register every enabled server from the configuration."""
        return [self.register_server(s) for s in self.config.enabled_servers()]

    async def discover(self, name: str) -> list[ToolDefinition]:
        """Fetch one server's tools and register them.

        Raises:
            KeyError: If no server with that name is registered.
        """
        client = self._clients[name]
        tools = await client.get_tools()
        self.registry.register_server_tools(name, tools)
        return tools

    def start_discovery(self) -> asyncio.Task[None]:
        """Start discovering every registered server in the background.

        Returns the running discovery task; a second call returns the same
        task while it is unfinished.
        """
        if self._discovery is None or self._discovery.done():
            self._discovery = asyncio.create_task(self._discover_all(), name="tool-discovery")
        return self._discovery

    async def wait_for_discovery(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds for discovery, without cancelling it.

        Returns:
            True if discovery finished within the timeout.
        """
        if self._discovery is None:
            return True
        timeout = self.config.discovery_timeout if timeout is None else timeout
        done, _ = await asyncio.wait({self._discovery}, timeout=timeout)
        if not done:
            self._log.warning("tool_discovery_still_running", timeout=timeout)
            return False
        return True

    async def start(self, timeout: float | None = None) -> bool:
        """Register configured servers, begin discovery, and wait a bounded time."""
        self.register_all()
        self.start_discovery()
        return await self.wait_for_discovery(timeout)

    async def unregister_server(self, name: str) -> bool:
        """Stop a server and drop its tools."""
        client = self._clients.pop(name, None)
        if client is None:
            return False
        self.dispatcher.unregister_server(name)
        self.registry.unregister_server(name)
        await client.stop()
        return True

    async def stop_all(self) -> None:
        """Cancel pending discovery and stop every server."""
        if self._discovery is not None and not self._discovery.done():
            self._discovery.cancel()
            await asyncio.gather(self._discovery, return_exceptions=True)
        self._discovery = None
        await asyncio.gather(*(c.stop() for c in self._clients.values()))
        self._log.info("servers_stopped", count=len(self._clients))

    async def _discover_all(self) -> None:
        names = list(self._clients)
        results = await asyncio.gather(
            *(self.discover(name) for name in names), return_exceptions=True
        )
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                self._log.error("tool_discovery_failed", server=name, error=str(result))
            else:
                self._log.info("tool_discovery_complete", server=name, count=len(result))
