"""Base protocol and types for token stream producers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, TypedDict

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class Message(TypedDict):
    """A single message in a conversation.

    Attributes:
        role: Message role - "system", "user" or "assistant".
        content: Message content text.
    """

    role: Literal["system", "user", "assistant"]
    content: str


class TokenStreamProducer(Protocol):
    """Protocol for model clients that stream generated text.

    The stream is an async sequence of text fragments; exhausting it is
    the end-of-stream signal. Consumers may stop iterating early, for
    example once a complete tool call has been extracted.
    """

    @property
    def default_model(self) -> str:
        """Return the default model for this producer."""
        ...

    def stream(
        self,
        messages: list[Message],
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """Stream the completion of ``messages`` as text fragments.

        Raises:
            ProviderError: If the request fails.
        """
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderModelError(ProviderError):
    """Raised when the requested model is unavailable."""

    pass
