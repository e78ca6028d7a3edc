"""
OpenAI-compatible adapter.

One implementation serves every backend that speaks the OpenAI Chat
Completions protocol: OpenAI itself, Azure OpenAI, Groq, Cerebras,
OpenRouter, xAI and GitHub Copilot. They differ only in endpoint,
headers and a few request knobs.

The SDK's own retry loop is disabled (``max_retries=0``); the resilience
executor owns retries.
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Optional

import httpx
import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from onellm.exceptions import ProviderConfigurationError, RequestValidationError
from onellm.llm.llm_config import DEFAULT_AZURE_API_VERSION, Provider, ProviderSettings
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.providers.base import (
    ProviderAdapter,
    error_for_status,
    error_for_transport,
    parse_retry_after,
)

logger = logging.getLogger(__name__)


OPENAI_COMPATIBLE: frozenset[Provider] = frozenset({
    Provider.OPENAI,
    Provider.AZURE,
    Provider.GROQ,
    Provider.CEREBRAS,
    Provider.OPENROUTER,
    Provider.XAI,
    Provider.COPILOT,
})

# Backends known to honour stream_options.include_usage
_STREAM_USAGE: frozenset[Provider] = frozenset({
    Provider.OPENAI,
    Provider.AZURE,
    Provider.OPENROUTER,
    Provider.XAI,
})

_DEFAULT_HEADERS: dict[Provider, dict[str, str]] = {
    Provider.OPENROUTER: {
        "HTTP-Referer": "https://github.com/onellm",
        "X-Title": "OneLLM",
    },
    Provider.COPILOT: {
        "Copilot-Integration-Id": "vscode-chat",
        "Editor-Version": "onellm/0.1.0",
    },
}


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat Completions adapter on top of the official ``openai`` SDK."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if settings.provider not in OPENAI_COMPATIBLE:
            raise ValueError(
                f"'{settings.provider.value}' does not speak the OpenAI protocol"
            )
        self.provider = settings.provider
        super().__init__(settings)
        self._client = self._build_client(settings, http_client)
        self._owns_http_client = http_client is None

    def _build_client(
        self,
        settings: ProviderSettings,
        http_client: Optional[httpx.AsyncClient],
    ) -> AsyncOpenAI:
        headers = {**_DEFAULT_HEADERS.get(self.provider, {}), **settings.extra_headers}

        if self.provider is Provider.AZURE:
            if not settings.base_url:
                raise ProviderConfigurationError(
                    "Azure OpenAI requires an endpoint "
                    "(e.g. https://my-resource.openai.azure.com)",
                    provider=self.provider,
                )
            return AsyncAzureOpenAI(
                api_key=settings.api_key,
                azure_endpoint=settings.base_url,
                api_version=settings.api_version or DEFAULT_AZURE_API_VERSION,
                timeout=settings.timeout,
                max_retries=0,
                default_headers=headers or None,
                http_client=http_client,
            )

        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.endpoint,
            timeout=settings.timeout,
            max_retries=0,
            default_headers=headers or None,
            http_client=http_client,
        )

    # --- Request encoding ---

    def _kwargs(self, request: LLMRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages(),
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            # o-series models reject max_tokens on the OpenAI API itself
            key = "max_completion_tokens" if self.provider is Provider.OPENAI else "max_tokens"
            kwargs[key] = request.max_tokens
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.stop:
            kwargs["stop"] = list(request.stop)
        return kwargs

    def _translate(self, error: openai.OpenAIError) -> Exception:
        if isinstance(error, openai.APIStatusError):
            return error_for_status(
                self.provider,
                error.status_code,
                error.message,
                retry_after=parse_retry_after(error.response.headers.get("retry-after")),
            )
        if isinstance(error, openai.APIConnectionError):
            return error_for_transport(self.provider, error)
        return RequestValidationError(
            f"{self.provider.value}: {error}", provider=self.provider
        )

    # --- Capability ---

    async def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        try:
            completion = await self._client.chat.completions.create(**self._kwargs(request))
        except openai.OpenAIError as e:
            raise self._translate(e) from e
        elapsed = (time.monotonic() - start) * 1000

        choice = completion.choices[0] if completion.choices else None
        text = choice.message.content if choice and choice.message else ""
        usage = completion.usage

        return LLMResponse(
            content=text or "",
            provider=self.provider,
            model=request.model,
            latency_ms=elapsed,
            usage=TokenUsage(
                input_tokens=(usage.prompt_tokens or 0) if usage else 0,
                output_tokens=(usage.completion_tokens or 0) if usage else 0,
            ),
            finish_reason=choice.finish_reason if choice else None,
            raw=completion,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        kwargs = self._kwargs(request)
        kwargs["stream"] = True
        if self.provider in _STREAM_USAGE:
            kwargs["stream_options"] = {"include_usage": True}

        index = 0
        usage: Optional[TokenUsage] = None
        finish_reason: Optional[str] = None

        try:
            response_stream = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise self._translate(e) from e

        try:
            async for chunk in response_stream:
                if chunk.usage is not None:
                    usage = TokenUsage(
                        input_tokens=chunk.usage.prompt_tokens or 0,
                        output_tokens=chunk.usage.completion_tokens or 0,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                if choice.delta is not None and choice.delta.content:
                    yield StreamChunk(text=choice.delta.content, index=index)
                    index += 1
        except openai.OpenAIError as e:
            raise self._translate(e) from e
        except httpx.TransportError as e:
            raise error_for_transport(self.provider, e) from e
        finally:
            await response_stream.close()

        yield StreamChunk.final(index, usage=usage, finish_reason=finish_reason)

    async def aclose(self) -> None:
        # Injected httpx clients belong to the caller.
        if self._owns_http_client:
            await self._client.close()
