"""Tests for JSON-RPC request/response correlation."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from toolbridge.rpc import (
    InvalidResponseError,
    ProcessExitedError,
    ProcessStoppedError,
    RpcCancelledError,
    RpcCorrelator,
    RpcResponseError,
    RpcTimeoutError,
    ServerUnavailableError,
)
from toolbridge.rpc.protocol import normalize_id


class FakeTransport:
    """Line transport that records written requests."""

    def __init__(self, running: bool = True, can_start: bool = True) -> None:
        self.running = running
        self.can_start = can_start
        self.start_calls = 0
        self.lines: list[dict[str, Any]] = []

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self) -> bool:
        self.start_calls += 1
        self.running = self.can_start
        return self.can_start

    async def write_line(self, line: str) -> None:
        assert line.endswith("\n")
        self.lines.append(json.loads(line))


def _response(request_id: Any, **members: Any) -> str:
    return json.dumps({"jsonrpc": "2.0", "id": request_id, **members})


async def _wait_for_lines(transport: FakeTransport, count: int) -> None:
    while len(transport.lines) < count:
        await asyncio.sleep(0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def correlator(transport: FakeTransport) -> RpcCorrelator:
    return RpcCorrelator(transport, request_timeout=5)


class TestSend:
    """Tests for sending requests."""

    @pytest.mark.asyncio
    async def test_request_format(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """Requests carry jsonrpc, method, params and a fresh integer id."""
        task = asyncio.create_task(correlator.send("read_file", {"path": "a.txt"}))
        await _wait_for_lines(transport, 1)

        request = transport.lines[0]
        assert request == {
            "jsonrpc": "2.0",
            "method": "read_file",
            "params": {"path": "a.txt"},
            "id": 1,
        }
        assert 1 in correlator

        correlator.handle_line(_response(1, result={"content": "hi"}))
        assert await task == {"content": "hi"}
        assert correlator.pending_ids == []

    @pytest.mark.asyncio
    async def test_ids_increase(self, transport: FakeTransport, correlator: RpcCorrelator) -> None:
        """Each request gets the next id."""
        for expected in (1, 2, 3):
            task = asyncio.create_task(correlator.send("ping"))
            await _wait_for_lines(transport, expected)
            assert transport.lines[-1]["id"] == expected
            correlator.handle_line(_response(expected, result=None))
            await task

    @pytest.mark.asyncio
    async def test_out_of_order_responses(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """Responses delivered 2 then 1 resolve their own callers."""
        first = asyncio.create_task(correlator.send("first"))
        second = asyncio.create_task(correlator.send("second"))
        await _wait_for_lines(transport, 2)
        ids = {line["method"]: line["id"] for line in transport.lines}

        correlator.handle_line(_response(ids["second"], result="result-for-second"))
        correlator.handle_line(_response(ids["first"], result="result-for-first"))

        assert await first == "result-for-first"
        assert await second == "result-for-second"

    @pytest.mark.asyncio
    async def test_string_id_matched(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """Integer ids echoed as strings still resolve."""
        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)

        correlator.handle_line(_response("1", result="pong"))

        assert await task == "pong"

    @pytest.mark.asyncio
    async def test_empty_method_rejected(self, correlator: RpcCorrelator) -> None:
        """An empty method is a programmer error."""
        with pytest.raises(ValueError):
            await correlator.send("")

    @pytest.mark.asyncio
    async def test_implicit_start(self) -> None:
        """A stopped transport is started once before sending."""
        transport = FakeTransport(running=False)
        correlator = RpcCorrelator(transport, request_timeout=5)

        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)
        correlator.handle_line(_response(1, result="pong"))

        assert await task == "pong"
        assert transport.start_calls == 1

    @pytest.mark.asyncio
    async def test_start_failure(self) -> None:
        """A transport that cannot start fails the request as unavailable."""
        transport = FakeTransport(running=False, can_start=False)
        correlator = RpcCorrelator(transport, request_timeout=5)

        with pytest.raises(ServerUnavailableError, match="Could not start server"):
            await correlator.send("ping")

        assert transport.lines == []
        assert correlator.pending_ids == []


class TestTimeout:
    """Tests for request timeouts."""

    @pytest.mark.asyncio
    async def test_timeout_is_cancellation(self, transport: FakeTransport) -> None:
        """An unanswered request fails with a cancellation-classed error."""
        correlator = RpcCorrelator(transport, request_timeout=0.05)

        with pytest.raises(RpcCancelledError) as exc_info:
            await correlator.send("slow", {"n": 1})

        assert isinstance(exc_info.value, RpcTimeoutError)
        assert exc_info.value.method == "slow"
        assert correlator.pending_ids == []
        assert 1 not in correlator

    @pytest.mark.asyncio
    async def test_late_response_ignored(self, transport: FakeTransport) -> None:
        """A response after the timeout is dropped without error."""
        correlator = RpcCorrelator(transport, request_timeout=0.01)
        with pytest.raises(RpcTimeoutError):
            await correlator.send("slow")

        correlator.handle_line(_response(1, result="too late"))

        assert correlator.pending_ids == []


class TestHandleLine:
    """Tests for inbound line routing."""

    @pytest.mark.asyncio
    async def test_error_response(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """An error member fails the request with its code and message."""
        task = asyncio.create_task(correlator.send("nope"))
        await _wait_for_lines(transport, 1)

        correlator.handle_line(
            _response(1, error={"code": -32601, "message": "Unknown method: 'nope'"})
        )

        with pytest.raises(RpcResponseError) as exc_info:
            await task
        assert exc_info.value.code == -32601
        assert "Unknown method" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_null_result(self, transport: FakeTransport, correlator: RpcCorrelator) -> None:
        """A null result is a valid result."""
        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)

        correlator.handle_line(_response(1, result=None))

        assert await task is None

    @pytest.mark.asyncio
    async def test_missing_result_and_error(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """A response with neither result nor error is invalid."""
        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)

        correlator.handle_line(_response(1))

        with pytest.raises(InvalidResponseError):
            await task

    @pytest.mark.asyncio
    async def test_noise_is_ignored(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """Banners, notifications and unmatched ids leave pending requests alone."""
        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)

        correlator.handle_line("Secure MCP Filesystem Server running on stdio")
        correlator.handle_line("")
        correlator.handle_line("[1, 2, 3]")
        correlator.handle_line('{"jsonrpc": "2.0", "method": "notifications/progress"}')
        correlator.handle_line('{"jsonrpc": "2.0", "id": 1, "method": "sampling/create"}')
        correlator.handle_line(_response(99, result="stray"))
        correlator.handle_line(_response(None, result="no id"))
        correlator.handle_line(_response("²", result="superscript id"))
        assert correlator.pending_ids == [1]

        correlator.handle_line(_response(1, result="pong"))
        assert await task == "pong"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (7, 7),
        ("7", 7),
        (7.0, 7),
        ("abc", "abc"),
        ("²", "²"),
        ("٣", "٣"),
        (True, None),
    ],
    ids=["int", "digit_string", "integral_float", "text", "superscript", "arabic_indic", "bool"],
)
def test_normalize_id(value: Any, expected: Any) -> None:
    """Only ASCII digit strings are read back as integer ids."""
    assert normalize_id(value) == expected


class TestFailAll:
    """Tests for failing every pending request."""

    @pytest.mark.asyncio
    async def test_fail_all_on_exit(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """Every pending request fails with the exit error."""
        tasks = [asyncio.create_task(correlator.send(f"m{i}")) for i in range(3)]
        await _wait_for_lines(transport, 3)

        failed = correlator.fail_all(ProcessExitedError("MCP server process exited unexpectedly."))

        assert failed == 3
        for task in tasks:
            with pytest.raises(ProcessExitedError, match="exited unexpectedly"):
                await task
        assert correlator.pending_ids == []

    @pytest.mark.asyncio
    async def test_fail_all_on_stop(
        self, transport: FakeTransport, correlator: RpcCorrelator
    ) -> None:
        """A stop cancels pending requests."""
        task = asyncio.create_task(correlator.send("ping"))
        await _wait_for_lines(transport, 1)

        correlator.fail_all(ProcessStoppedError("MCP server process was stopped."))

        with pytest.raises(RpcCancelledError):
            await task

    def test_fail_all_with_nothing_pending(self, correlator: RpcCorrelator) -> None:
        """Failing an empty table is a no-op."""
        assert correlator.fail_all(ProcessExitedError("gone")) == 0
