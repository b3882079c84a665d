"""Observability module for ToolBridge.

Provides structured logging and the tool operation log.
"""

from toolbridge.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)
from toolbridge.observability.operation_log import ToolOperation, ToolOperationLogger

__all__ = [
    "ToolOperation",
    "ToolOperationLogger",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
