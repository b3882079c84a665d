"""Structured logging configuration for ToolBridge.

Provides two logging modes:
- Console logging: Controlled by -v flag (rich output on stderr)
- File logging: Controlled by --log flag (all events to {log_dir}/debug.jsonl)

Console output always goes to stderr. A stdio tool server owns its stdout
for JSON-RPC, so nothing here may ever write there.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

DEBUG_LOG_NAME = "debug.jsonl"

# Dependencies whose INFO/DEBUG chatter drowns out bridge events
QUIET_LOGGERS = ("httpx", "httpcore", "langchain_core", "asyncio")

# Module-level state
_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None


class JSONLFileHandler(logging.FileHandler):
    """File handler that writes one JSON object per record."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(record_to_entry(record), default=str) + "\n"
            if self.stream is None:
                self.stream = self._open()
            self.stream.write(line)
            self.stream.flush()
        except Exception:
            self.handleError(record)


def record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    """Flatten a log record into a JSONL entry.

    structlog hands its event dict over as ``record.msg``; its keys become
    top-level fields next to ``timestamp``, ``level``, ``logger`` and
    ``message``. An ``exc_info`` flag is replaced by the formatted traceback
    under ``exception``.
    """
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if not isinstance(record.msg, dict):
        entry["message"] = record.getMessage()
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return entry

    event = dict(record.msg)
    event.pop("level", None)
    event.pop("timestamp", None)
    entry["message"] = event.pop("event", "")
    exception = _format_exc_info(event.pop("exc_info", None))
    entry.update(event)
    if exception:
        entry["exception"] = exception
    return entry


def _format_exc_info(exc_info: Any) -> str | None:
    if not exc_info:
        return None
    if isinstance(exc_info, BaseException):
        error: BaseException | None = exc_info
    elif isinstance(exc_info, tuple):
        error = exc_info[1]
    else:
        # exc_info=True: the record is emitted inside the except block.
        error = sys.exc_info()[1]
    if error is None:
        return None
    return "".join(traceback.format_exception(error))


def _console_handler(verbosity: int) -> RichHandler:
    levels = {0: logging.WARNING, 1: logging.INFO}
    return RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        # Server stderr lines are logged verbatim and may contain brackets.
        markup=False,
        level=levels.get(verbosity, logging.DEBUG),
    )


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Configure logging for ToolBridge.

    Safe to call repeatedly; each call replaces the previous handlers.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG
        log_to_file: If True, enable file logging to {log_dir}/debug.jsonl.
        log_dir: Directory for log files. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but log_dir is not provided.
    """
    global _configured, _logs_dir

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and log_dir is not None:
        handlers.append(_open_file_handler(log_dir))
        _logs_dir = log_dir

    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def _open_file_handler(log_dir: Path) -> JSONLFileHandler:
    global _file_handler

    log_dir.mkdir(parents=True, exist_ok=True)
    _file_handler = JSONLFileHandler(str(log_dir / DEBUG_LOG_NAME), mode="a")
    _file_handler.setLevel(logging.DEBUG)
    return _file_handler


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Directory of the active debug.jsonl, None when file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    """Detach and close the debug.jsonl handler.

    Records logged afterwards no longer reach the file.
    """
    global _file_handler, _logs_dir
    if _file_handler is not None:
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    _logs_dir = None
