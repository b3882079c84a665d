"""Bridge configuration loading.

Configuration is read once, at load time, into explicit dataclasses that
are passed to the components that need them. Nothing below the CLI reads
environment variables or global settings on its own.

Two file layouts are accepted (JSON files are read as YAML):

The ``mcp.json`` layout used by most MCP hosts::

    {"mcpServers": {"files": {"command": "npx", "args": ["-y", "server-fs", "."]}}}

and the native layout::

    servers:
      - name: files
        command: npx
        args: [-y, server-fs, .]
    rpc:
      request_timeout: 60
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

# Default configuration values
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_STARTUP_DELAY = 3.0
DEFAULT_STOP_TIMEOUT = 5.0
DEFAULT_INFO_MARKERS = ("running on", "Allowed directories")
DEFAULT_DISCOVERY_TIMEOUT = 10.0
DEFAULT_MAX_TOOL_CALLS = 5
DEFAULT_SERVER_TYPE = "filesystem"
DEFAULT_SERVER_TAGS = ("Filesystem", "MCP")
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.2"

CONFIG_FILENAMES = ("toolbridge.yaml", "toolbridge.yml", "mcp.json")


@dataclass(frozen=True)
class RpcSettings:
    """Timing and logging settings for one stdio JSON-RPC channel.

    Attributes:
        request_timeout: Seconds to wait for a response before a request fails.
        startup_delay: Seconds to let a freshly spawned server settle before
            checking that it is still alive.
        stop_timeout: Seconds to wait for a terminated server to exit.
        info_markers: Substrings that mark a stderr line as informational.
    """

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    startup_delay: float = DEFAULT_STARTUP_DELAY
    stop_timeout: float = DEFAULT_STOP_TIMEOUT
    info_markers: tuple[str, ...] = DEFAULT_INFO_MARKERS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: RpcSettings | None = None) -> RpcSettings:
        """Create settings from a dictionary, filling gaps from ``base``."""
        base = base or cls()
        markers = data.get("info_markers")
        return cls(
            request_timeout=float(data.get("request_timeout", base.request_timeout)),
            startup_delay=float(data.get("startup_delay", base.startup_delay)),
            stop_timeout=float(data.get("stop_timeout", base.stop_timeout)),
            info_markers=tuple(markers) if markers is not None else base.info_markers,
        )


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for one stdio tool server process."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    server_type: str = DEFAULT_SERVER_TYPE
    tags: tuple[str, ...] = DEFAULT_SERVER_TAGS
    rpc: RpcSettings = field(default_factory=RpcSettings)

    @classmethod
    def from_dict(
        cls, name: str, data: Mapping[str, Any], rpc: RpcSettings | None = None
    ) -> ServerConfig:
        """Create config from one server entry.

        Both ``enabled: false`` and the ``mcp.json`` style ``disabled: true``
        turn a server off.

        Args:
            name: Server name.
            data: Server entry with at least a ``command``.
            rpc: Bridge-wide RPC settings that per-server ``rpc`` values override.

        Returns:
            ServerConfig instance.

        Raises:
            ValueError: If the entry has no command.
        """
        command = data.get("command")
        if not command:
            raise ValueError(f"server '{name}' has no command")

        cwd = data.get("cwd")
        enabled = bool(data.get("enabled", True)) and not bool(data.get("disabled", False))
        tags = data.get("tags")
        return cls(
            name=name,
            command=str(command),
            args=tuple(str(a) for a in data.get("args", ())),
            cwd=Path(cwd) if cwd else None,
            env={str(k): str(v) for k, v in dict(data.get("env", {})).items()},
            enabled=enabled,
            server_type=str(data.get("server_type", data.get("type", DEFAULT_SERVER_TYPE))),
            tags=tuple(tags) if tags is not None else DEFAULT_SERVER_TAGS,
            rpc=RpcSettings.from_dict(data.get("rpc", {}), base=rpc),
        )


@dataclass(frozen=True)
class ExtractorSettings:
    """Settings for the streaming tool-call extractor.

    Attributes:
        balance_partial_fences: Close unbalanced braces inside an
            unterminated code fence before parsing.
        check_interval: Minimum characters appended between two
            incremental checks. 1 checks on every chunk.
    """

    balance_partial_fences: bool = True
    check_interval: int = 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExtractorSettings:
        """Create settings from dictionary."""
        return cls(
            balance_partial_fences=bool(data.get("balance_partial_fences", True)),
            check_interval=max(1, int(data.get("check_interval", 1))),
        )


@dataclass(frozen=True)
class ProviderSettings:
    """Settings for the Ollama token stream producer."""

    host: str = DEFAULT_OLLAMA_HOST
    model: str = DEFAULT_OLLAMA_MODEL
    temperature: float = 0.7
    timeout: float = 120.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderSettings:
        """Create settings from dictionary."""
        return cls(
            host=str(data.get("host", DEFAULT_OLLAMA_HOST)),
            model=str(data.get("model", DEFAULT_OLLAMA_MODEL)),
            temperature=float(data.get("temperature", 0.7)),
            timeout=float(data.get("timeout", 120.0)),
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Complete bridge configuration."""

    servers: tuple[ServerConfig, ...] = ()
    rpc: RpcSettings = field(default_factory=RpcSettings)
    extractor: ExtractorSettings = field(default_factory=ExtractorSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    log_dir: Path | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BridgeConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary in either the ``mcp.json`` or the native layout.

        Returns:
            BridgeConfig instance.
        """
        rpc = RpcSettings.from_dict(data.get("rpc", {}))

        servers: list[ServerConfig] = []
        mcp_servers = data.get("mcpServers", {})
        for name, entry in dict(mcp_servers).items():
            servers.append(ServerConfig.from_dict(str(name), entry, rpc=rpc))

        native = data.get("servers", [])
        if isinstance(native, Mapping):
            native = [{"name": name, **dict(entry)} for name, entry in native.items()]
        for entry in native:
            if "name" not in entry:
                raise ValueError("server entry is missing 'name'")
            servers.append(ServerConfig.from_dict(str(entry["name"]), entry, rpc=rpc))

        names = [s.name for s in servers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate server names: {', '.join(duplicates)}")

        log_dir = data.get("log_dir")
        return cls(
            servers=tuple(servers),
            rpc=rpc,
            extractor=ExtractorSettings.from_dict(data.get("extractor", {})),
            provider=ProviderSettings.from_dict(data.get("provider", {})),
            discovery_timeout=float(data.get("discovery_timeout", DEFAULT_DISCOVERY_TIMEOUT)),
            max_tool_calls=int(data.get("max_tool_calls", DEFAULT_MAX_TOOL_CALLS)),
            log_dir=Path(log_dir) if log_dir else None,
        )

    def enabled_servers(self) -> list[ServerConfig]:
        """Return servers that are not disabled."""
        return [s for s in self.servers if s.enabled]

    def get_server(self, name: str) -> ServerConfig | None:
        """Look up a server by name."""
        for server in self.servers:
            if server.name == name:
                return server
        return None


class ConfigError(Exception):
    """Raised when bridge configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


def load_config(path: Path) -> BridgeConfig:
    """Load bridge configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        Loaded configuration.

    Raises:
        ConfigError: If config cannot be loaded.
    """
    if not path.exists():
        raise ConfigError(path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError(path, "Empty file")
        if not isinstance(data, Mapping):
            raise ConfigError(path, "Top level must be a mapping")

        return BridgeConfig.from_dict(data)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(path, str(e)) from e


def find_config(directory: Path) -> Path | None:
    """Return the first known config file in ``directory``, if any."""
    for filename in CONFIG_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def apply_env_overrides(
    config: BridgeConfig, environ: Mapping[str, str] | None = None
) -> BridgeConfig:
    """Return a copy of ``config`` with environment overrides applied.

    Recognised variables are TOOLBRIDGE_RPC_TIMEOUT, OLLAMA_HOST and
    OLLAMA_MODEL. The RPC timeout override applies to every server.
    """
    env = os.environ if environ is None else environ

    timeout = env.get("TOOLBRIDGE_RPC_TIMEOUT")
    if timeout:
        seconds = float(timeout)
        rpc = replace(config.rpc, request_timeout=seconds)
        servers = tuple(
            replace(s, rpc=replace(s.rpc, request_timeout=seconds)) for s in config.servers
        )
        config = replace(config, rpc=rpc, servers=servers)

    provider = config.provider
    if env.get("OLLAMA_HOST"):
        provider = replace(provider, host=env["OLLAMA_HOST"])
    if env.get("OLLAMA_MODEL"):
        provider = replace(provider, model=env["OLLAMA_MODEL"])
    if provider is not config.provider:
        config = replace(config, provider=provider)

    return config
