"""Fixtures for tests that run real tool server processes."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from toolbridge.config import RpcSettings, ServerConfig
from toolbridge.rpc import MCPProcessClient

ECHO_RPC = RpcSettings(request_timeout=15, startup_delay=1.0, stop_timeout=5)


def echo_server_config(*extra_args: str, name: str = "echo") -> ServerConfig:
    """Config launching the bundled echo server with the current interpreter."""
    return ServerConfig(
        name=name,
        command=sys.executable,
        args=("-m", "toolbridge.servers.echo", *extra_args),
        server_type="testing",
        tags=("Testing",),
        rpc=ECHO_RPC,
    )


@pytest.fixture
def echo_config() -> ServerConfig:
    return echo_server_config()


@pytest_asyncio.fixture
async def echo_client(echo_config: ServerConfig) -> AsyncIterator[MCPProcessClient]:
    """A started echo server client, stopped after the test."""
    client = MCPProcessClient(echo_config)
    assert await client.start(), "echo server failed to start"
    try:
        yield client
    finally:
        await client.stop()
