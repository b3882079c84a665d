"""LangChain wrappers for bridge tools.

Converts registry tools into LangChain ``StructuredTool`` objects whose
coroutine dispatches through a ToolDispatcher, so LangChain agents can use
both local tools and tools served by stdio servers.

Usage:
    from toolbridge.tools.langchain_tools import to_langchain_tools

    tools = to_langchain_tools(dispatcher)
    agent = create_agent(model, tools=tools)
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from langchain_core.tools import BaseTool, StructuredTool

if TYPE_CHECKING:
    from toolbridge.dispatch import ToolDispatcher
    from toolbridge.tools.base import ToolDefinition


def to_langchain_tool(dispatcher: ToolDispatcher, definition: ToolDefinition) -> BaseTool:
    """Wrap one tool definition as a LangChain tool.

    The tool's JSON schema is passed through unchanged as the args schema.
    Results are returned as JSON strings; failures come back as
    ``{"error": ...}`` rather than raising.
    """
    name = definition.name
    server_name = definition.server_name

    async def _run(**kwargs: Any) -> str:
        result = await dispatcher.call(name, kwargs, server_name=server_name)
        return json.dumps(result, ensure_ascii=False)

    return StructuredTool.from_function(
        coroutine=_run,
        name=name,
        description=definition.description or name,
        args_schema=definition.input_schema,
    )


def to_langchain_tools(dispatcher: ToolDispatcher) -> list[BaseTool]:
    """Wrap every enabled tool in the dispatcher's registry."""
    return [
        to_langchain_tool(dispatcher, definition)
        for definition in dispatcher.registry.enabled_tools()
    ]
