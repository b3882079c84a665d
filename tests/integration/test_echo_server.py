"""End-to-end tests against the bundled echo tool server process."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING

import psutil
import pytest

from toolbridge.config import BridgeConfig
from toolbridge.rpc import (
    MCPProcessClient,
    ProcessExitedError,
    RpcCancelledError,
    RpcResponseError,
    ServerProcessState,
)
from toolbridge.session import BridgeSession

if TYPE_CHECKING:
    from toolbridge.config import ServerConfig

pytestmark = pytest.mark.integration


async def _wait_pending(client: MCPProcessClient, count: int = 1) -> None:
    for _ in range(500):
        if len(client.correlator.pending_ids) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("request never became pending")


class TestRoundTrip:
    """Requests and responses over a real stdio pipe."""

    @pytest.mark.asyncio
    async def test_execute_tool_echoes_input(self, echo_client: MCPProcessClient) -> None:
        """The echo tool returns a value equal to its input."""
        tool_input = {"text": "héllo\nworld", "nested": {"items": [1, 2.5, None, True]}}

        result = await echo_client.execute_tool("echo", tool_input)

        assert result == tool_input

    @pytest.mark.asyncio
    async def test_tools_list(self, echo_client: MCPProcessClient) -> None:
        """The published catalog is decorated with server metadata."""
        tools = await echo_client.get_tools()

        names = {t.name for t in tools}
        assert {"echo", "sleep", "exit", "get_date_time", "calculate"} <= names
        for tool in tools:
            assert tool.server_name == "echo"
            assert not tool.metadata.get("fallback")

    @pytest.mark.asyncio
    async def test_tools_call_method(self, echo_client: MCPProcessClient) -> None:
        """tools/call is accepted alongside name-as-method calls."""
        result = await echo_client.request(
            "tools/call", {"name": "calculate", "arguments": {"expression": "6*7"}}
        )

        assert result == {"expression": "6*7", "result": 42}

    @pytest.mark.asyncio
    async def test_unknown_method(self, echo_client: MCPProcessClient) -> None:
        """Unknown methods fail the single request only."""
        with pytest.raises(RpcResponseError) as exc_info:
            await echo_client.request("no_such_tool", {})
        assert exc_info.value.code == -32601

        assert await echo_client.execute_tool("echo", {"still": "alive"}) == {"still": "alive"}

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, echo_client: MCPProcessClient) -> None:
        """Concurrent requests each get their own response."""
        results = await asyncio.gather(
            *(echo_client.execute_tool("echo", {"n": n}) for n in range(10))
        )

        assert results == [{"n": n} for n in range(10)]


class TestServerVariants:
    """Servers with a stdout banner or an empty catalog."""

    @pytest.mark.asyncio
    async def test_banner_ignored(self, echo_config: ServerConfig) -> None:
        """A non-JSON line on stdout does not disturb correlation."""
        config = replace(echo_config, args=(*echo_config.args, "--banner"))
        async with MCPProcessClient(config) as client:
            assert await client.execute_tool("echo", {"a": 1}) == {"a": 1}

    @pytest.mark.asyncio
    async def test_empty_catalog(self, echo_config: ServerConfig) -> None:
        """An empty catalog is returned as-is, not replaced by the fallback."""
        config = replace(echo_config, args=(*echo_config.args, "--empty"))
        async with MCPProcessClient(config) as client:
            assert await client.get_tools() == []


class TestCrashRecovery:
    """Unexpected exits fail pending requests and allow a restart."""

    @pytest.mark.asyncio
    async def test_external_kill(self, echo_client: MCPProcessClient) -> None:
        """Killing the process fails pending requests; a restart works."""
        pending = asyncio.create_task(echo_client.request("sleep", {"seconds": 60}))
        await _wait_pending(echo_client)
        pid = echo_client.supervisor.pid
        assert pid is not None

        psutil.Process(pid).kill()

        with pytest.raises(ProcessExitedError, match="exited unexpectedly"):
            await asyncio.wait_for(pending, timeout=10)
        assert echo_client.state is ServerProcessState.CRASHED
        assert echo_client.correlator.pending_ids == []

        assert await echo_client.start()
        assert echo_client.supervisor.pid != pid
        assert await echo_client.execute_tool("echo", {"back": True}) == {"back": True}

    @pytest.mark.asyncio
    async def test_exit_tool(self, echo_client: MCPProcessClient) -> None:
        """A server exiting mid-request yields an error payload."""
        result = await echo_client.execute_tool("exit", {"code": 3})

        assert result == {"error": "Error executing tool: MCP server process exited unexpectedly."}

        # The next call starts a fresh process implicitly.
        assert await echo_client.execute_tool("echo", {"x": 1}) == {"x": 1}


class TestStop:
    """Stopping a server."""

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self, echo_client: MCPProcessClient) -> None:
        """Requests pending at stop fail with a cancellation error."""
        pending = asyncio.create_task(echo_client.request("sleep", {"seconds": 60}))
        await _wait_pending(echo_client)
        pid = echo_client.supervisor.pid

        await echo_client.stop()

        with pytest.raises(RpcCancelledError):
            await pending
        assert echo_client.state is ServerProcessState.STOPPED
        assert pid is not None
        assert not psutil.pid_exists(pid)

        await echo_client.stop()


class TestBridgeSession:
    """A session wiring configured servers into the dispatcher."""

    @pytest.mark.asyncio
    async def test_session_dispatches_to_server(self, echo_config: ServerConfig) -> None:
        """Discovered server tools are dispatched to their server."""
        config = BridgeConfig(servers=(echo_config,), discovery_timeout=30)

        async with BridgeSession(config, builtin=False) as session:
            assert session.discovery_complete
            assert session.registry.server_for("echo") == "echo"
            result = await session.dispatcher.call("echo", {"via": "session"})

        assert result == {"via": "session"}
