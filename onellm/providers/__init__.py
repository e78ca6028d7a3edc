"""
Provider adapters — one capability (invoke / stream) per backend.

Modules:
- base: ProviderAdapter contract and HTTP-status → error translation
- http_adapter: httpx plumbing for raw-HTTP backends
- openai_compat: OpenAI, Azure, Groq, Cerebras, OpenRouter, xAI, Copilot
- anthropic_provider: Claude (Messages API)
- google: Gemini
- ollama: local Ollama server
"""

from __future__ import annotations

from typing import Optional

import httpx

from onellm.llm.llm_config import Provider, ProviderSettings
from onellm.providers.anthropic_provider import AnthropicAdapter
from onellm.providers.base import ProviderAdapter
from onellm.providers.google import GoogleAdapter
from onellm.providers.ollama import OllamaAdapter
from onellm.providers.openai_compat import OPENAI_COMPATIBLE, OpenAICompatibleAdapter


def create_adapter(
    settings: ProviderSettings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ProviderAdapter:
    """Build the adapter that serves ``settings.provider``."""
    provider = settings.provider
    if provider in OPENAI_COMPATIBLE:
        return OpenAICompatibleAdapter(settings, http_client=http_client)
    if provider is Provider.ANTHROPIC:
        return AnthropicAdapter(settings, http_client=http_client)
    if provider is Provider.GOOGLE:
        return GoogleAdapter(settings, http_client=http_client)
    if provider is Provider.OLLAMA:
        return OllamaAdapter(settings, http_client=http_client)
    raise ValueError(f"No adapter implementation for provider: {provider.value}")


__all__ = [
    "ProviderAdapter",
    "OpenAICompatibleAdapter",
    "AnthropicAdapter",
    "GoogleAdapter",
    "OllamaAdapter",
    "create_adapter",
]
