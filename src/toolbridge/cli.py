"""ToolBridge CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.json import JSON
from rich.markup import escape
from rich.table import Table

from toolbridge.config import (
    BridgeConfig,
    ConfigError,
    apply_env_overrides,
    find_config,
    load_config,
)
from toolbridge.dispatch.dispatcher import error_message
from toolbridge.extraction import ToolCallExtractor
from toolbridge.observability import close_file_logging, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="tb",
    help="ToolBridge: tool calling for local models over stdio JSON-RPC tool servers.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

# Global state set by the callback, used by commands
_log_dir: Path | None = None
_config_path: Path | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log",
            help="Enable file logging to this directory (debug.jsonl, tool_operations.jsonl).",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Config file (YAML or mcp.json). Default: ./toolbridge.yaml or ./mcp.json.",
            envvar="TOOLBRIDGE_CONFIG",
        ),
    ] = None,
) -> None:
    """ToolBridge: tool calling for local models over stdio JSON-RPC tool servers."""
    global _log_dir, _config_path
    _log_dir = log_dir
    _config_path = config

    configure_logging(verbosity=verbose, log_to_file=log_dir is not None, log_dir=log_dir)
    if log_dir is not None:
        atexit.register(close_file_logging)


def _load_config() -> BridgeConfig:
    """Load the configured or discovered config file, exiting on errors."""
    path = _config_path or find_config(Path.cwd())
    try:
        config = load_config(path) if path is not None else BridgeConfig()
        config = apply_env_overrides(config)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    if _log_dir is not None and config.log_dir is None:
        config = replace(config, log_dir=_log_dir)
    log.debug("config_loaded", path=str(path) if path else None, servers=len(config.servers))
    return config


def _print_json(value: Any) -> None:
    # Output must parse as JSON, so long strings are never wrapped.
    console.print(JSON(json.dumps(value, ensure_ascii=False, default=str)), soft_wrap=True)


@app.command()
def version() -> None:
    """Show version information."""
    from toolbridge import __version__

    console.print(f"ToolBridge v{__version__}")


@app.command()
def tools(
    server: Annotated[
        str | None, typer.Option("--server", "-s", help="Only list this server's tools.")
    ] = None,
    allow_dir: Annotated[
        list[Path] | None,
        typer.Option("--allow-dir", help="Directory the built-in file tools may access."),
    ] = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Seconds to wait for tool discovery.")
    ] = None,
) -> None:
    """List the tools available to the model."""
    from toolbridge.session import BridgeSession

    config = _load_config()

    async def _list() -> tuple[list[Any], bool]:
        session = BridgeSession(config, allowed_dirs=allow_dir or ())
        try:
            await session.open(discovery_timeout=timeout)
            return session.registry.tools(), session.discovery_complete
        finally:
            await session.close()

    definitions, complete = asyncio.run(_list())
    if server is not None:
        definitions = [d for d in definitions if d.server_name == server]

    if not definitions:
        console.print("[yellow]No tools available.[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Available Tools")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Server", style="bold")
    table.add_column("Tags", style="dim")
    table.add_column("Description")

    for definition in sorted(definitions, key=lambda d: (d.server_name or "", d.name)):
        server_label = definition.server_name or "[dim]local[/dim]"
        if definition.metadata.get("fallback"):
            server_label += " [yellow](fallback)[/yellow]"
        description = definition.description
        if len(description) > 80:
            description = description[:77] + "..."
        table.add_row(
            definition.name,
            server_label,
            ", ".join(definition.tags),
            escape(description),
        )

    console.print(table)
    if not complete:
        console.print(
            "[yellow]Tool discovery did not finish in time; list may be partial.[/yellow]"
        )


@app.command()
def call(
    tool: Annotated[str, typer.Argument(help="Tool name")],
    input_json: Annotated[
        str | None, typer.Option("--input", "-i", help="Tool input as a JSON object.")
    ] = None,
    server: Annotated[
        str | None, typer.Option("--server", "-s", help="Route the call to this server.")
    ] = None,
    allow_dir: Annotated[
        list[Path] | None,
        typer.Option("--allow-dir", help="Directory the built-in file tools may access."),
    ] = None,
) -> None:
    """Execute one tool and print its result."""
    from toolbridge.session import BridgeSession

    config = _load_config()

    async def _call() -> Any:
        async with BridgeSession(config, allowed_dirs=allow_dir or ()) as session:
            return await session.dispatcher.call(tool, input_json, server_name=server)

    result = asyncio.run(_call())
    _print_json(result)
    if error_message(result) is not None:
        raise typer.Exit(1)


@app.command()
def extract(
    source: Annotated[
        Path | None, typer.Argument(help="File with model output. Reads stdin if omitted.")
    ] = None,
    chunk_size: Annotated[
        int,
        typer.Option(
            "--chunk-size",
            help="Feed the text in chunks of this many characters, as a stream would.",
            min=0,
        ),
    ] = 0,
) -> None:
    """Extract a tool call from model output and print it."""
    if source is not None:
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            console.print(f"[red]Error:[/red] Cannot read {source}: {escape(str(e))}")
            raise typer.Exit(1) from e
    else:
        text = sys.stdin.read()

    config = _load_config()
    extractor = ToolCallExtractor(config.extractor)

    if chunk_size > 0:
        for index, start in enumerate(range(0, len(text), chunk_size), start=1):
            if extractor.feed(text[start : start + chunk_size]) is not None:
                console.print(
                    f"[green]Tool call detected at chunk {index}[/green] "
                    f"({min(start + chunk_size, len(text))}/{len(text)} chars)"
                )
                break
        result = extractor.finish()
    else:
        result = extractor.extract(text)

    _print_json(result.to_response())
    if not result.is_tool_call:
        raise typer.Exit(2)


@app.command()
def chat(
    prompt: Annotated[str, typer.Argument(help="Message for the model")],
    model: Annotated[
        str | None, typer.Option("--model", "-m", help="Model name (default from config).")
    ] = None,
    allow_dir: Annotated[
        list[Path] | None,
        typer.Option("--allow-dir", help="Directory the built-in file tools may access."),
    ] = None,
) -> None:
    """Send one message to the model, running any tools it calls."""
    from toolbridge.conversation import ConversationError, ConversationRunner
    from toolbridge.providers import OllamaStreamProvider
    from toolbridge.session import BridgeSession

    config = _load_config()

    async def _chat() -> Any:
        async with (
            BridgeSession(config, allowed_dirs=allow_dir or ()) as session,
            OllamaStreamProvider(config.provider) as provider,
        ):
            runner = ConversationRunner(
                provider=provider,
                dispatcher=session.dispatcher,
                extractor_settings=config.extractor,
                max_tool_calls=config.max_tool_calls,
                model=model,
            )
            result = await runner.run(prompt)
            for exchange in result.state.exchanges:
                console.print(f"[dim]tool:[/dim] [cyan]{exchange.invocation.tool_name}[/cyan]")
            return result

    try:
        result = asyncio.run(_chat())
    except ConversationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    console.print(result.text, markup=False)
    if result.hit_tool_limit:
        console.print(f"[yellow]Stopped after {config.max_tool_calls} tool calls.[/yellow]")


if __name__ == "__main__":
    app()
