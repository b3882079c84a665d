"""Ollama streaming token producer."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx

from toolbridge.config import ProviderSettings
from toolbridge.observability import get_logger
from toolbridge.providers.base import (
    Message,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

log = get_logger(__name__)


class OllamaStreamProvider:
    """Stream chat completions from an Ollama server.

    Uses ``/api/chat`` with ``stream: true``; Ollama answers with one JSON
    object per line, each carrying the next fragment in ``message.content``.

    Attributes:
        settings: Host, default model, temperature and timeout.
    """

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Provider settings. Defaults to a local Ollama.
            client: HTTP client to use instead of a provider-owned one.
        """
        self.settings = settings or ProviderSettings()
        self.host = self.settings.host.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.settings.timeout)

    @property
    def default_model(self) -> str:
        return self.settings.model

    async def stream(
        self,
        messages: list[Message],
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """Stream the completion of ``messages``.

        Raises:
            ProviderConnectionError: If connection to Ollama fails.
            ProviderModelError: If the model is not available.
            ProviderError: For other API errors.
        """
        model = model or self.settings.model
        payload = {
            "model": model,
            "messages": [dict(m) for m in messages],
            "stream": True,
            "options": {
                "temperature": self.settings.temperature if temperature is None else temperature
            },
        }

        try:
            url = f"{self.host}/api/chat"
            async with self._client.stream("POST", url, json=payload) as response:
                if response.status_code == 404:
                    raise ProviderModelError(
                        "ollama", f"Model '{model}' not found. Run 'ollama pull {model}' first."
                    )
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        "ollama", f"API error (status {response.status_code}): {body}"
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError as e:
                        raise ProviderError("ollama", f"Invalid JSON in stream: {e}") from e
                    if data.get("error"):
                        raise ProviderError("ollama", str(data["error"]))

                    fragment = data.get("message", {}).get("content", "")
                    if fragment:
                        yield fragment
                    if data.get("done"):
                        log.debug(
                            "ollama_stream_done",
                            model=model,
                            eval_count=data.get("eval_count", 0),
                            done_reason=data.get("done_reason"),
                        )
                        return
        except httpx.ConnectError as e:
            raise ProviderConnectionError(
                "ollama", f"Failed to connect to Ollama at {self.host}: {e}"
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderConnectionError("ollama", f"Request to Ollama timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError("ollama", f"HTTP error talking to Ollama: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OllamaStreamProvider:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
