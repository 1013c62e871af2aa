from __future__ import annotations

from ..errors import ProviderAdapterError
from ..types import OPENAI_COMPATIBLE_KINDS, ProviderKind
from .anthropic import AnthropicAdapter
from .base import PreparedRequest, ProviderAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai_compatible import OpenAICompatibleAdapter


def build_adapter(kind: ProviderKind, *, base_url: str) -> ProviderAdapter:
    if kind in OPENAI_COMPATIBLE_KINDS:
        return OpenAICompatibleAdapter(kind=kind, base_url=base_url)
    if kind is ProviderKind.GEMINI:
        return GeminiAdapter(base_url=base_url)
    if kind is ProviderKind.ANTHROPIC:
        return AnthropicAdapter(base_url=base_url)
    if kind is ProviderKind.OLLAMA:
        return OllamaAdapter(base_url=base_url)
    raise ProviderAdapterError(f"Unsupported provider: {kind!r}")


__all__ = [
    "AnthropicAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAICompatibleAdapter",
    "PreparedRequest",
    "ProviderAdapter",
    "build_adapter",
]
