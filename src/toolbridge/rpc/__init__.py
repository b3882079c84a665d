"""Stdio JSON-RPC transport for out-of-process tool servers."""

from toolbridge.rpc.client import MCPProcessClient
from toolbridge.rpc.correlator import PendingRequest, RpcCorrelator
from toolbridge.rpc.errors import (
    InvalidResponseError,
    ProcessExitedError,
    ProcessStoppedError,
    RpcCancelledError,
    RpcError,
    RpcResponseError,
    RpcTimeoutError,
    ServerUnavailableError,
)
from toolbridge.rpc.process import ProcessSupervisor, ServerProcessState
from toolbridge.rpc.server import StdioToolServer

__all__ = [
    "InvalidResponseError",
    "MCPProcessClient",
    "PendingRequest",
    "ProcessExitedError",
    "ProcessStoppedError",
    "ProcessSupervisor",
    "RpcCancelledError",
    "RpcCorrelator",
    "RpcError",
    "RpcResponseError",
    "RpcTimeoutError",
    "ServerProcessState",
    "ServerUnavailableError",
    "StdioToolServer",
]
