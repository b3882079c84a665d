"""Tests for MCPProcessClient."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from toolbridge.config import RpcSettings, ServerConfig
from toolbridge.rpc import MCPProcessClient, RpcResponseError, RpcTimeoutError, ServerProcessState
from toolbridge.tools.base import ToolDefinition, ToolServer


@pytest.fixture
def client() -> MCPProcessClient:
    config = ServerConfig(
        name="files",
        command="npx",
        args=("-y", "@modelcontextprotocol/server-filesystem", "."),
        rpc=RpcSettings(request_timeout=1, startup_delay=0),
    )
    return MCPProcessClient(config)


def _echo_writer(client: MCPProcessClient):
    """Build a write_line replacement that echoes params back as the result."""

    async def write_line(line: str) -> None:
        request = json.loads(line)
        client.correlator.handle_line(
            json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": request["params"]})
        )

    return write_line


class TestProtocol:
    """MCPProcessClient satisfies the tool server contract."""

    def test_is_tool_server(self, client: MCPProcessClient) -> None:
        """The client implements ToolServer."""
        assert isinstance(client, ToolServer)
        assert client.name == "files"
        assert client.state is ServerProcessState.NOT_STARTED
        assert not client.is_connected


class TestGetTools:
    """Tests for tool discovery."""

    @pytest.mark.asyncio
    async def test_fallback_when_start_fails(self, client: MCPProcessClient) -> None:
        """An unstartable server yields the non-empty fallback catalog."""
        with patch.object(client.supervisor, "start", AsyncMock(return_value=False)) as start:
            tools = await client.get_tools()
            again = await client.get_tools()

        names = [t.name for t in tools]
        assert "read_file" in names
        assert "list_allowed_directories" in names
        for tool in tools:
            assert tool.description
            assert tool.input_schema["type"] == "object"
            assert tool.metadata["server_name"] == "files"
            assert tool.metadata["server_type"] == "filesystem"
        # The fallback stands in for the catalog until a refresh.
        assert start.await_count == 1
        assert [t.name for t in again] == names

    @pytest.mark.asyncio
    async def test_refresh_replaces_cached_fallback(self, client: MCPProcessClient) -> None:
        """refresh_tools retries a server whose start failed earlier."""
        start = AsyncMock(side_effect=[False, True])
        send = AsyncMock(return_value={"tools": [{"name": "search_files"}]})
        with (
            patch.object(client.supervisor, "start", start),
            patch.object(client.correlator, "send", send),
        ):
            fallback = await client.get_tools()
            refreshed = await client.refresh_tools()
            cached = await client.get_tools()

        assert all(t.metadata.get("fallback") for t in fallback)
        assert [t.name for t in refreshed] == ["search_files"]
        assert [t.name for t in cached] == ["search_files"]
        assert start.await_count == 2
        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_fallback_for_unknown_command(self) -> None:
        """A command that cannot be spawned degrades to the fallback catalog."""
        config = ServerConfig(
            name="missing",
            command="toolbridge-no-such-server-binary",
            rpc=RpcSettings(startup_delay=0),
        )
        client = MCPProcessClient(config)

        tools = await client.get_tools()

        assert tools
        assert all(t.metadata.get("fallback") for t in tools)
        assert client.state is ServerProcessState.CRASHED

    @pytest.mark.asyncio
    async def test_discovered_tools_decorated(self, client: MCPProcessClient) -> None:
        """Discovered tools carry server metadata and default tags."""
        result = {
            "tools": [
                {
                    "name": "search_files",
                    "description": "Search files",
                    "inputSchema": {
                        "type": "object",
                        "properties": {"pattern": {"type": "string"}},
                        "required": ["pattern"],
                    },
                },
                "not-a-tool",
                {"description": "missing name"},
            ]
        }
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.correlator, "send", AsyncMock(return_value=result)),
        ):
            tools = await client.get_tools()

        assert len(tools) == 1
        tool = tools[0]
        assert tool.name == "search_files"
        assert tool.required_parameters == ["pattern"]
        assert tool.server_name == "files"
        assert tool.tags == ["Filesystem", "MCP"]

    @pytest.mark.asyncio
    async def test_empty_catalog_is_cached(self, client: MCPProcessClient) -> None:
        """An empty catalog from a reachable server is authoritative."""
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.correlator, "send", AsyncMock(return_value={"tools": []})) as send,
        ):
            assert await client.get_tools() == []
            assert await client.get_tools() == []

        assert send.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "send",
        [
            AsyncMock(side_effect=RpcTimeoutError("tools/list", 1)),
            AsyncMock(side_effect=RpcResponseError(-32601, "Unknown method")),
            AsyncMock(return_value={"unexpected": True}),
        ],
        ids=["timeout", "error", "no_tools_key"],
    )
    async def test_fallback_on_bad_discovery(
        self, client: MCPProcessClient, send: AsyncMock
    ) -> None:
        """Failed or malformed tools/list responses fall back."""
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.correlator, "send", send),
        ):
            tools = await client.get_tools()
            await client.get_tools()

        assert tools
        assert all(t.metadata.get("fallback") for t in tools)
        # A running server is asked again on the next call.
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_refresh_tools(self, client: MCPProcessClient) -> None:
        """refresh_tools drops the cache and asks again."""
        send = AsyncMock(
            side_effect=[{"tools": []}, {"tools": [{"name": "read_file"}]}],
        )
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.correlator, "send", send),
        ):
            assert await client.get_tools() == []
            refreshed = await client.refresh_tools()

        assert [t.name for t in refreshed] == ["read_file"]


class TestExecuteTool:
    """Tests for tool execution."""

    @pytest.mark.asyncio
    async def test_round_trip(self, client: MCPProcessClient) -> None:
        """An echoing server returns a value equal to the input."""
        tool_input = {"path": "notes.txt", "options": {"lines": [1, 2, 3], "raw": None}}
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.supervisor, "write_line", _echo_writer(client)),
        ):
            result = await client.execute_tool("read_file", tool_input)

        assert result == tool_input

    @pytest.mark.asyncio
    async def test_input_as_json_text(self, client: MCPProcessClient) -> None:
        """Input given as JSON text is parsed into an object."""
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(client.supervisor, "write_line", _echo_writer(client)),
        ):
            result = await client.execute_tool("read_file", '{"path": "a.txt"}')

        assert result == {"path": "a.txt"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool_input", ["not json", "[1, 2]", 42])
    async def test_invalid_input(self, client: MCPProcessClient, tool_input: object) -> None:
        """Input that is not an object is rejected without contacting the server."""
        with patch.object(client.supervisor, "start", AsyncMock(return_value=True)) as start:
            result = await client.execute_tool("read_file", tool_input)

        assert isinstance(result, dict)
        assert result["error"].startswith("Invalid input format")
        start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_not_started(self, client: MCPProcessClient) -> None:
        """A server that cannot start yields an error payload."""
        with patch.object(client.supervisor, "start", AsyncMock(return_value=False)):
            result = await client.execute_tool("read_file", {"path": "a.txt"})

        assert result == {"error": "MCP server could not be started"}

    @pytest.mark.asyncio
    async def test_rpc_failure_becomes_error_payload(self, client: MCPProcessClient) -> None:
        """RPC failures are returned, not raised."""
        with (
            patch.object(client.supervisor, "start", AsyncMock(return_value=True)),
            patch.object(
                client.correlator,
                "send",
                AsyncMock(side_effect=RpcTimeoutError("read_file", 1)),
            ),
        ):
            result = await client.execute_tool("read_file", {"path": "a.txt"})

        assert isinstance(result, dict)
        assert result["error"].startswith("Error executing tool: Timeout")

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, client: MCPProcessClient) -> None:
        """An empty tool name is a programmer error."""
        with pytest.raises(ValueError):
            await client.execute_tool("", {})


class TestLifecycle:
    """Tests for availability and stop."""

    @pytest.mark.asyncio
    async def test_is_available_starts_server(self, client: MCPProcessClient) -> None:
        """The availability check starts a stopped server."""
        with patch.object(client.supervisor, "start", AsyncMock(return_value=True)) as start:
            assert await client.is_available()

        start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, client: MCPProcessClient) -> None:
        """Stopping a never-started client twice is harmless."""
        async with client:
            pass
        await client.stop()

        assert not client.is_connected


def test_tool_definition_round_trip() -> None:
    """Definitions survive the tools/list wire shape."""
    definition = ToolDefinition(
        name="read_file",
        description="Read a file",
        input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
        tags=["Filesystem"],
        metadata={"server_name": "files"},
    )

    assert ToolDefinition.from_dict(definition.to_dict()) == definition
