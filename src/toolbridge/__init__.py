"""ToolBridge: tool-call extraction and stdio JSON-RPC tool servers for local LLMs."""

__version__ = "0.1.0"
