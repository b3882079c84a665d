"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import pytest

from toolbridge.observability import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)
from toolbridge.observability.logging import record_to_entry

if TYPE_CHECKING:
    from pathlib import Path


def test_default_verbosity_is_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_verbose_enables_debug_root() -> None:
    """Any verbosity lets records through to the handlers."""
    configure_logging(verbosity=2)

    assert logging.getLogger().level == logging.DEBUG


def test_log_to_file_requires_dir() -> None:
    """File logging needs a directory."""
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(log_to_file=True)


def test_file_logging_writes_jsonl(tmp_path: Path) -> None:
    """Events are written as JSON lines with their fields."""
    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    try:
        assert get_logs_dir() == tmp_path
        get_logger("toolbridge.test").info("tool_dispatched", tool="calculate")
    finally:
        close_file_logging()

    assert get_logs_dir() is None
    lines = (tmp_path / "debug.jsonl").read_text().splitlines()
    entries = [json.loads(line) for line in lines]
    entry = next(e for e in entries if e["message"] == "tool_dispatched")
    assert entry["tool"] == "calculate"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "toolbridge.test"
    configure_logging(verbosity=0)


def _entries(log_dir: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in (log_dir / "debug.jsonl").read_text().splitlines()]


def test_file_logging_records_traceback(tmp_path: Path) -> None:
    """exc_info=True events carry the formatted traceback, not a flag."""
    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    try:
        try:
            raise RuntimeError("server handler blew up")
        except RuntimeError:
            get_logger("toolbridge.test").warning(
                "tool_dispatch_failed", tool="read_file", exc_info=True
            )
    finally:
        close_file_logging()

    entry = next(e for e in _entries(tmp_path) if e["message"] == "tool_dispatch_failed")
    assert entry["tool"] == "read_file"
    assert "exc_info" not in entry
    assert "RuntimeError: server handler blew up" in entry["exception"]
    assert entry["exception"].startswith("Traceback")
    configure_logging(verbosity=0)


def test_closed_file_log_receives_nothing(tmp_path: Path) -> None:
    """After close_file_logging the file is detached, not reopened."""
    configure_logging(verbosity=1, log_to_file=True, log_dir=tmp_path)
    logger = get_logger("toolbridge.test")
    logger.info("before_close")
    close_file_logging()

    logger.info("after_close")

    messages = [e["message"] for e in _entries(tmp_path)]
    assert "before_close" in messages
    assert "after_close" not in messages
    configure_logging(verbosity=0)


def test_record_to_entry_plain_record() -> None:
    """Records from plain stdlib loggers keep their formatted message."""
    record = logging.LogRecord("httpx", logging.WARNING, __file__, 1, "GET %s", ("/api",), None)

    entry = record_to_entry(record)

    assert entry["message"] == "GET /api"
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "httpx"
    assert "exception" not in entry
