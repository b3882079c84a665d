"""Prompt text for tool-calling conversations.

Models without native tool calling are told about tools in the system
prompt and asked to answer with a tool-call JSON object. Tool results are
fed back as a new user message.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from toolbridge.dispatch.dispatcher import error_message

if TYPE_CHECKING:
    from collections.abc import Iterable

    from toolbridge.tools.base import ToolDefinition
    from toolbridge.values import JsonValue

SYSTEM_PROMPT = """You are an AI assistant that can use tools to help answer questions.
If you need to use a tool, respond with only a JSON object in this format:
```json
{{"type": "tool_use", "tool": "tool_name", "tool_input": {{"param1": "value1"}}}}
```
Use exactly one tool per response. If you don't need a tool, just respond normally.

Available tools:
{tools}"""

TOOL_RESULT_PROMPT = """Previous user query: {query}

You used the {tool} tool, which returned the following result:
<tool_result>
{result}
</tool_result>

Based on this tool result, please provide a helpful response to the user's original query.
If you need to use another tool, respond using the tool call format as instructed previously."""

TOOL_ERROR_PROMPT = """Previous user query: {query}

You tried to use the {tool} tool, but it failed with this error:
<tool_error>
{error}
</tool_error>

Explain the problem to the user, or try a different tool if one fits."""


def format_tool_descriptions(tools: Iterable[ToolDefinition]) -> str:
    """Render tool definitions as a Markdown list for the system prompt.

    Example output::

        ## read_file
        Description: Read the complete contents of a file.
        Parameters:
        - path (required): Path to the file
    """
    sections = []
    for tool in tools:
        lines = [f"## {tool.name}", f"Description: {tool.description}"]
        properties = tool.input_schema.get("properties") or {}
        required = set(tool.input_schema.get("required") or [])
        if properties:
            lines.append("Parameters:")
            for name, details in properties.items():
                kind = "required" if name in required else "optional"
                description = details.get("description", "") if isinstance(details, dict) else ""
                lines.append(f"- {name} ({kind}): {description}".rstrip())
        else:
            lines.append("Parameters: none")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def build_system_prompt(tools: Iterable[ToolDefinition]) -> str:
    return SYSTEM_PROMPT.format(tools=format_tool_descriptions(tools) or "(none)")


def format_tool_result(query: str, tool: str, result: JsonValue) -> str:
    """Build the follow-up prompt carrying a tool's result or error."""
    error = error_message(result)
    if error is not None:
        return TOOL_ERROR_PROMPT.format(query=query, tool=tool, error=error)
    if isinstance(result, str):
        rendered = result
    else:
        rendered = json.dumps(result, indent=2, ensure_ascii=False)
    return TOOL_RESULT_PROMPT.format(query=query, tool=tool, result=rendered)
