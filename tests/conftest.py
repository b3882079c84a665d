"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from toolbridge.observability import configure_logging


@pytest.fixture(autouse=True, scope="session")
def quiet_logging() -> None:
    """Configure logging once so tests start from the default WARNING level."""
    configure_logging(verbosity=0)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent
