"""Token stream producers for model generation."""

from toolbridge.providers.base import (
    Message,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
    TokenStreamProducer,
)
from toolbridge.providers.ollama import OllamaStreamProvider

__all__ = [
    "Message",
    "OllamaStreamProvider",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderModelError",
    "TokenStreamProducer",
]
