"""Tools for model tool calling.

This package provides the tool definitions and protocols, the tool
registry, built-in local tools, and the fallback catalog used when a tool
server cannot be reached.
"""

from toolbridge.tools.base import Tool, ToolDefinition, ToolInvocation, ToolServer
from toolbridge.tools.builtin import builtin_tools, register_builtin_tools
from toolbridge.tools.fallback import fallback_tools
from toolbridge.tools.registry import ToolHandler, ToolRegistry

__all__ = [
    "Tool",
    "ToolDefinition",
    "ToolHandler",
    "ToolInvocation",
    "ToolRegistry",
    "ToolServer",
    "builtin_tools",
    "fallback_tools",
    "register_builtin_tools",
]
