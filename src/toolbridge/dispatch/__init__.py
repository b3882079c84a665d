"""Routing of extracted tool calls to local handlers and tool servers."""

from toolbridge.dispatch.dispatcher import ToolDispatcher

__all__ = ["ToolDispatcher"]
