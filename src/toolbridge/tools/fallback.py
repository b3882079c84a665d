"""Built-in tool catalog used when a tool server cannot be reached.

A filesystem server that fails to start still gets a catalog to offer the
model, so tool use degrades instead of disappearing.
"""

from __future__ import annotations

import copy
from typing import Any

from toolbridge.config import DEFAULT_SERVER_TAGS, DEFAULT_SERVER_TYPE
from toolbridge.tools.base import ToolDefinition


def _schema(**properties: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            name: {"type": "string", "description": description}
            for name, description in properties.items()
        },
        "required": list(properties),
    }


_FILESYSTEM_TOOLS: tuple[tuple[str, str, dict[str, Any]], ...] = (
    (
        "read_file",
        "Read the complete contents of a file from the file system. Handles various "
        "text encodings and provides detailed error messages if the file cannot be "
        "read. Use this tool when you need to examine the contents of a single file. "
        "Only works within allowed directories.",
        _schema(path="Path to the file"),
    ),
    (
        "write_file",
        "Create a new file or completely overwrite an existing file with new content. "
        "Use with caution as it will overwrite existing files without warning. "
        "Only works within allowed directories.",
        _schema(path="Path to the file", content="Content to write"),
    ),
    (
        "list_directory",
        "Get a detailed listing of all files and directories in a specified path. "
        "Results distinguish between files and directories with [FILE] and [DIR] "
        "prefixes. Only works within allowed directories.",
        _schema(path="Path to the directory"),
    ),
    (
        "directory_tree",
        "Get a recursive tree view of files and directories as a JSON structure. "
        "Each entry includes 'name', 'type' (file/directory), and 'children' for "
        "directories. Only works within allowed directories.",
        _schema(path="Path to the directory"),
    ),
    (
        "list_allowed_directories",
        "Returns the list of directories that this server is allowed to access. Use "
        "this to understand which directories are available before trying to access files.",
        _schema(),
    ),
)


def fallback_tools(
    server_name: str,
    server_type: str = DEFAULT_SERVER_TYPE,
    tags: list[str] | tuple[str, ...] = DEFAULT_SERVER_TAGS,
) -> list[ToolDefinition]:
    """Return the hardcoded filesystem catalog attributed to ``server_name``.

    A fresh list of fresh definitions is built on every call, so callers may
    mutate the result.
    """
    return [
        ToolDefinition(
            name=name,
            description=description,
            input_schema=copy.deepcopy(schema),
            tags=list(tags),
            metadata={"server_name": server_name, "server_type": server_type, "fallback": True},
        )
        for name, description, schema in _FILESYSTEM_TOOLS
    ]
