"""Echo tool server, a minimal reference implementation.

Serves tools useful for exercising the stdio transport:
- echo: returns its arguments unchanged
- sleep: waits before answering
- exit: terminates the server process immediately
plus the built-in get_date_time and calculate tools.

Launch:
    python -m toolbridge.servers.echo

Test:
    echo '{"jsonrpc":"2.0","method":"echo","params":{"a":1},"id":1}' | python -m toolbridge.servers.echo
"""

from __future__ import annotations

import os
import sys
import time
from typing import Annotated

import typer

from toolbridge.observability import configure_logging
from toolbridge.rpc.server import StdioToolServer
from toolbridge.tools.base import ToolDefinition
from toolbridge.tools.builtin import CalculatorTool, DateTimeTool
from toolbridge.values import JsonObject, JsonValue

# Upper bound for the sleep tool
MAX_SLEEP_SECONDS = 300.0


class EchoTool:
    """Return the arguments unchanged."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="echo",
            description="Echoes back its input. Useful for testing.",
            input_schema={"type": "object", "properties": {}, "additionalProperties": True},
            tags=["Testing"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        return arguments


class SleepTool:
    """Wait, then answer. Requests behind it on the same server queue up."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="sleep",
            description="Wait for a number of seconds, then return.",
            input_schema={
                "type": "object",
                "properties": {"seconds": {"type": "number", "description": "Seconds to wait"}},
                "required": ["seconds"],
            },
            tags=["Testing"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        seconds = arguments.get("seconds", 0)
        if not isinstance(seconds, int | float) or isinstance(seconds, bool):
            raise ValueError("seconds must be a number")
        seconds = min(max(float(seconds), 0.0), MAX_SLEEP_SECONDS)
        time.sleep(seconds)
        return {"slept": seconds}


class ExitTool:
    """Terminate the server without answering."""

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="exit",
            description="Terminate the server process immediately.",
            input_schema={
                "type": "object",
                "properties": {"code": {"type": "integer", "description": "Exit status"}},
                "required": [],
            },
            tags=["Testing"],
        )

    def execute(self, arguments: JsonObject) -> JsonValue:
        code = arguments.get("code", 1)
        sys.stdout.flush()
        os._exit(code if isinstance(code, int) else 1)


def build_server(empty: bool = False) -> StdioToolServer:
    """Create the echo server; ``empty`` serves no tools at all."""
    server = StdioToolServer("echo", server_type="testing")
    if not empty:
        for tool in (EchoTool(), SleepTool(), ExitTool(), DateTimeTool(), CalculatorTool()):
            server.register(tool)
    return server


def main(
    banner: Annotated[
        bool, typer.Option("--banner", help="Print a non-JSON greeting on stdout first.")
    ] = False,
    empty: Annotated[bool, typer.Option("--empty", help="Serve an empty tool catalog.")] = False,
    verbose: Annotated[int, typer.Option("-v", "--verbose", count=True)] = 0,
) -> None:
    """Run the echo tool server on stdio."""
    configure_logging(verbosity=verbose)
    if banner:
        print("Echo tool server starting", flush=True)
    build_server(empty=empty).run()


if __name__ == "__main__":
    typer.run(main)
