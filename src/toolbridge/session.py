"""Assembled bridge: registry, dispatcher and tool servers in one context."""

from __future__ import annotations

from typing import TYPE_CHECKING

from toolbridge.dispatch import ToolDispatcher
from toolbridge.manager import ServerManager
from toolbridge.observability import ToolOperationLogger, get_logger
from toolbridge.tools.builtin import register_builtin_tools
from toolbridge.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path
    from types import TracebackType

    from toolbridge.config import BridgeConfig

log = get_logger(__name__)


class BridgeSession:
    """Registry, dispatcher and configured servers with a shared lifetime.

    Entering the session registers the built-in tools, registers every
    enabled server and waits a bounded time for tool discovery. Leaving it
    stops every server.

    Example:
        >>> async with BridgeSession(config) as session:
        ...     result = await session.dispatcher.call("get_date_time")
    """

    def __init__(
        self,
        config: BridgeConfig,
        allowed_dirs: Sequence[Path] = (),
        builtin: bool = True,
    ) -> None:
        self.config = config
        self.registry = ToolRegistry()
        self.operation_log = ToolOperationLogger(config.log_dir)
        self.dispatcher = ToolDispatcher(self.registry, operation_log=self.operation_log)
        self.manager = ServerManager(config, self.registry, self.dispatcher)
        self._allowed_dirs = list(allowed_dirs)
        self._builtin = builtin
        self.discovery_complete = False

    async def open(self, discovery_timeout: float | None = None) -> None:
        if self._builtin:
            register_builtin_tools(self.registry, self._allowed_dirs)
        self.discovery_complete = await self.manager.start(discovery_timeout)
        log.info(
            "bridge_session_open",
            tools=len(self.registry),
            servers=len(self.manager.clients),
            discovery_complete=self.discovery_complete,
        )

    async def close(self) -> None:
        await self.manager.stop_all()

    async def __aenter__(self) -> BridgeSession:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
