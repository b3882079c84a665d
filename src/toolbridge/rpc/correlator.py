"""JSON-RPC request/response correlation over a line transport.

Each request gets the next integer id and a future registered before the
request line is written. Response lines resolve futures by id alone, so
responses may arrive in any order.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from toolbridge.config import DEFAULT_REQUEST_TIMEOUT
from toolbridge.observability import get_logger
from toolbridge.rpc.errors import (
    InvalidResponseError,
    RpcError,
    RpcResponseError,
    RpcTimeoutError,
    ServerUnavailableError,
)
from toolbridge.rpc.protocol import JsonRpcRequest, JsonRpcResponse, normalize_id, parse_line

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

COULD_NOT_START = "Could not start server."


class LineTransport(Protocol):
    """Line-oriented transport the correlator writes requests to."""

    @property
    def is_running(self) -> bool: ...

    async def start(self) -> bool: ...

    async def write_line(self, line: str) -> None: ...


@dataclass
class PendingRequest:
    """A request awaiting its response."""

    id: int
    method: str
    future: asyncio.Future[Any]
    issued_at: float = field(default_factory=time.monotonic)


class RpcCorrelator:
    """Correlate JSON-RPC requests with responses by id.

    Feed every stdout line of the server to ``handle_line``. Call
    ``fail_all`` when the server stops or exits so no caller waits for a
    response that cannot come.
    """

    def __init__(
        self,
        transport: LineTransport,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.transport = transport
        self.request_timeout = request_timeout
        self._log = logger or get_logger(__name__)
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}

    @property
    def pending_ids(self) -> list[int]:
        return list(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    async def send(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its result.

        Starts the transport once if it is not running.

        Args:
            method: JSON-RPC method; for tool calls, the tool name.
            params: Request parameters.

        Returns:
            The response's ``result`` payload.

        Raises:
            ServerUnavailableError: If the server cannot be started or written to.
            RpcTimeoutError: If no response arrives within the timeout.
            RpcResponseError: If the server answers with an error.
            InvalidResponseError: If the response has neither result nor error.
            ProcessExitedError: If the server exits while the request is pending.
            ProcessStoppedError: If the server is stopped while the request is pending.
        """
        if not method:
            raise ValueError("method must not be empty")

        if not self.transport.is_running and not await self.transport.start():
            raise ServerUnavailableError(COULD_NOT_START)

        return await self._request(method, params, self.transport.write_line)

    async def _request(
        self,
        method: str,
        params: dict[str, Any] | None,
        write: Callable[[str], Awaitable[None]],
    ) -> Any:
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        # Registered before writing: a fast server may answer before write returns.
        self._pending[request_id] = PendingRequest(request_id, method, future)
        line = JsonRpcRequest(method=method, params=params or {}, id=request_id).to_line()

        try:
            await write(line)
            self._log.debug("rpc_request_sent", id=request_id, method=method)
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except TimeoutError:
            self._log.warning(
                "rpc_request_timeout", id=request_id, method=method, timeout=self.request_timeout
            )
            raise RpcTimeoutError(method, self.request_timeout) from None
        finally:
            self._pending.pop(request_id, None)

    def handle_line(self, line: str) -> None:
        """Route one inbound line to the request it answers."""
        message = parse_line(line)
        if message is None:
            self._log.debug("rpc_non_json_line", line=line[:200])
            return

        if "method" in message or message.get("id") is None:
            # Server-initiated notifications and requests are not answers.
            self._log.debug("rpc_notification", method=message.get("method"))
            return

        response = JsonRpcResponse.from_dict(message)
        request_id = normalize_id(response.id)
        pending = self._pending.get(request_id) if isinstance(request_id, int) else None
        if pending is None:
            self._log.warning("rpc_unmatched_response", id=response.id)
            return
        if pending.future.done():
            self._log.debug("rpc_late_response", id=request_id)
            return

        elapsed = time.monotonic() - pending.issued_at
        if response.error is not None:
            error = response.error
            code = error.get("code")
            self._log.info(
                "rpc_error_response", id=request_id, method=pending.method, code=code
            )
            pending.future.set_exception(
                RpcResponseError(
                    code if isinstance(code, int) else None,
                    str(error.get("message", "Unknown error")),
                    error.get("data"),
                )
            )
        elif response.has_result:
            self._log.debug(
                "rpc_response", id=request_id, method=pending.method, seconds=round(elapsed, 3)
            )
            pending.future.set_result(response.result)
        else:
            self._log.warning("rpc_invalid_response", id=request_id, method=pending.method)
            pending.future.set_exception(
                InvalidResponseError(f"Invalid response to '{pending.method}': no result or error")
            )

    def fail_all(self, error: RpcError) -> int:
        """Fail every pending request with a fresh copy of ``error``.

        ``error`` must be constructible from its message alone.

        Returns:
            Number of requests failed.
        """
        failed = 0
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(type(error)(str(error)))
                failed += 1
        self._pending.clear()
        if failed:
            self._log.info("rpc_pending_failed", count=failed, error=str(error))
        return failed
