"""Tests for the Ollama token stream producer."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from toolbridge.config import ProviderSettings
from toolbridge.providers import (
    OllamaStreamProvider,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
)

MESSAGES = [{"role": "user", "content": "Hi"}]


def _ndjson(*objects: dict[str, Any]) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode()


def _provider(handler: Any) -> OllamaStreamProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaStreamProvider(ProviderSettings(host="http://ollama:11434/"), client=client)


async def _collect(provider: OllamaStreamProvider, **kwargs: Any) -> list[str]:
    return [chunk async for chunk in provider.stream(MESSAGES, **kwargs)]  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_streams_fragments() -> None:
    """Each NDJSON line's content is yielded in order."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            content=_ndjson(
                {"message": {"content": "Hel"}, "done": False},
                {"message": {"content": "lo"}, "done": False},
                {"message": {"content": ""}, "done": True, "eval_count": 2},
                {"message": {"content": "ignored"}, "done": False},
            ),
        )

    provider = _provider(handler)

    assert await _collect(provider, model="qwen2.5", temperature=0.1) == ["Hel", "lo"]

    request = requests[0]
    assert str(request.url) == "http://ollama:11434/api/chat"
    body = json.loads(request.content)
    assert body["model"] == "qwen2.5"
    assert body["stream"] is True
    assert body["options"] == {"temperature": 0.1}
    assert body["messages"] == MESSAGES


@pytest.mark.asyncio
async def test_default_model() -> None:
    """The configured model is used when none is given."""
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content)["model"])
        return httpx.Response(200, content=_ndjson({"done": True}))

    provider = _provider(handler)

    assert await _collect(provider) == []
    assert seen == [provider.default_model] == ["llama3.2"]


@pytest.mark.asyncio
async def test_missing_model() -> None:
    """A 404 means the model is not pulled."""
    provider = _provider(lambda request: httpx.Response(404, text="model not found"))

    with pytest.raises(ProviderModelError, match="ollama pull"):
        await _collect(provider)


@pytest.mark.asyncio
async def test_server_error() -> None:
    """Other error statuses raise ProviderError with the body."""
    provider = _provider(lambda request: httpx.Response(500, text="out of memory"))

    with pytest.raises(ProviderError, match="out of memory"):
        await _collect(provider)


@pytest.mark.asyncio
async def test_error_in_stream() -> None:
    """An error object mid-stream raises."""
    provider = _provider(
        lambda request: httpx.Response(
            200, content=_ndjson({"message": {"content": "a"}}, {"error": "model crashed"})
        )
    )

    with pytest.raises(ProviderError, match="model crashed"):
        await _collect(provider)


@pytest.mark.asyncio
async def test_connection_error() -> None:
    """Connection failures raise ProviderConnectionError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler)

    with pytest.raises(ProviderConnectionError, match="Failed to connect"):
        await _collect(provider)



class _BrokenStream(httpx.AsyncByteStream):
    """Response body that drops the connection after one line."""

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield _ndjson({"message": {"content": "Hel"}, "done": False})
        raise httpx.ReadError("connection reset by peer")


@pytest.mark.asyncio
async def test_read_error_mid_stream() -> None:
    """Transport errors other than connect and timeout raise ProviderError."""
    provider = _provider(lambda request: httpx.Response(200, stream=_BrokenStream()))
    received: list[str] = []

    with pytest.raises(ProviderError, match="connection reset") as exc_info:
        async for chunk in provider.stream(MESSAGES):  # type: ignore[arg-type]
            received.append(chunk)

    assert received == ["Hel"]
    assert isinstance(exc_info.value.__cause__, httpx.ReadError)


@pytest.mark.asyncio
async def test_protocol_error() -> None:
    """A malformed HTTP exchange raises ProviderError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.RemoteProtocolError("peer closed connection", request=request)

    with pytest.raises(ProviderError, match="peer closed connection"):
        await _collect(_provider(handler))

@pytest.mark.asyncio
async def test_close_leaves_injected_client_open() -> None:
    """Only provider-owned clients are closed."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    async with OllamaStreamProvider(client=client):
        pass

    assert not client.is_closed
    await client.aclose()
