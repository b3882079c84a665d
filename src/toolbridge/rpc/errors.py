"""Errors raised inside the stdio JSON-RPC layer.

These never cross the tool-server facade: MCPProcessClient converts them
into ``{"error": message}`` payloads.
"""

from __future__ import annotations

from typing import Any


class RpcError(Exception):
    """Base class for JSON-RPC channel errors."""


class ServerUnavailableError(RpcError):
    """Raised when the server process could not be started or written to."""


class ProcessExitedError(RpcError, OSError):
    """Raised for requests pending when the server process exits unexpectedly."""


class RpcCancelledError(RpcError):
    """Raised when a pending request is cancelled before a response arrives."""


class ProcessStoppedError(RpcCancelledError):
    """Raised for requests pending when the server is stopped."""


class RpcTimeoutError(RpcCancelledError):
    """Raised when no response arrives within the request timeout."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Timeout waiting for server response to '{method}' after {timeout:g}s")


class RpcResponseError(RpcError):
    """Raised when the server answers with a JSON-RPC ``error`` member."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        prefix = f"RPC error {code}" if code is not None else "RPC error"
        super().__init__(f"{prefix}: {message}")


class InvalidResponseError(RpcError):
    """Raised when a response carries neither ``result`` nor ``error``."""
