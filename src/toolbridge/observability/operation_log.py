"""Record of tool operations executed through the bridge.

Keeps the most recent operations in memory and, when a log directory is
given, appends every operation to logs/tool_operations.jsonl.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_MAX_RECENT = 100


@dataclass
class ToolOperation:
    """Entry for one tool execution."""

    timestamp: str
    tool: str
    input: dict[str, Any]
    result: Any
    success: bool
    duration_seconds: float

    server_name: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ToolOperationLogger:
    """Bounded log of tool operations with optional JSONL persistence.

    Attributes:
        log_path: Path to the JSONL log file, or None for memory-only logging.
        max_recent: Number of operations retained in memory.
    """

    def __init__(self, log_dir: Path | None = None, max_recent: int = DEFAULT_MAX_RECENT) -> None:
        """Initialize the operation logger.

        Args:
            log_dir: Directory for tool_operations.jsonl. None disables file output.
            max_recent: Number of operations retained in memory.
        """
        self.max_recent = max_recent
        self._recent: deque[ToolOperation] = deque(maxlen=max_recent)
        self.log_path = log_dir / "tool_operations.jsonl" if log_dir is not None else None
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, operation: ToolOperation) -> None:
        """Record an operation in memory and append it to the JSONL log."""
        self._recent.append(operation)
        if self.log_path is None:
            return

        with self.log_path.open("a") as f:
            f.write(json.dumps(asdict(operation), default=str) + "\n")

    @staticmethod
    def create_entry(
        tool: str,
        input: dict[str, Any],
        result: Any,
        duration_seconds: float,
        server_name: str | None = None,
        error: str | None = None,
        **metadata: Any,
    ) -> ToolOperation:
        """Create an operation entry with current timestamp.

        Success is derived from ``error``: an entry without an error message
        is a successful operation.

        Args:
            tool: Tool name.
            input: Normalized tool input.
            result: Result payload returned to the caller.
            duration_seconds: Time taken by the call.
            server_name: Tool server that handled the call, None for local tools.
            error: Error message if the call failed.
            **metadata: Additional metadata.

        Returns:
            ToolOperation ready for logging.
        """
        return ToolOperation(
            timestamp=datetime.now(UTC).isoformat(),
            tool=tool,
            input=input,
            result=result,
            success=error is None,
            duration_seconds=duration_seconds,
            server_name=server_name,
            error=error,
            metadata=dict(metadata),
        )

    def recent(self, limit: int | None = None) -> list[ToolOperation]:
        """Return recent operations, newest last."""
        operations = list(self._recent)
        if limit is not None:
            operations = operations[-limit:] if limit > 0 else []
        return operations

    def clear(self) -> None:
        """Forget in-memory operations. The JSONL file is left untouched."""
        self._recent.clear()

    def read_entries(self) -> list[ToolOperation]:
        """Read all entries from the log file.

        Returns:
            List of logged operations, empty when file logging is disabled.
        """
        if self.log_path is None or not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open() as f:
            for line in f:
                if line.strip():
                    entries.append(ToolOperation(**json.loads(line)))
        return entries
