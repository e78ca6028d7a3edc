"""
Anthropic adapter — Claude models over the Messages API.

Uses the official ``anthropic`` SDK with its retry loop disabled; the
resilience executor owns retries. Streaming consumes the raw event
stream so usage counters from ``message_start`` / ``message_delta`` end
up on the final chunk.
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from onellm.exceptions import RequestValidationError
from onellm.llm.llm_config import Provider, ProviderSettings
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.providers.base import (
    ProviderAdapter,
    error_for_status,
    error_for_transport,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

# The Messages API requires max_tokens on every request.
DEFAULT_MAX_TOKENS = 1024


class AnthropicAdapter(ProviderAdapter):
    """Claude via ``AsyncAnthropic``."""

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings)
        self._client = AsyncAnthropic(
            api_key=settings.api_key,
            base_url=settings.endpoint,
            timeout=settings.timeout,
            max_retries=0,
            default_headers=settings.extra_headers or None,
            http_client=http_client,
        )
        self._owns_http_client = http_client is None

    def _kwargs(self, request: LLMRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": request.user}],
        }
        if request.system:
            kwargs["system"] = request.system
        if request.temperature is not None:
            # Anthropic caps temperature at 1.0
            kwargs["temperature"] = min(request.temperature, 1.0)
        if request.top_p is not None:
            kwargs["top_p"] = request.top_p
        if request.stop:
            kwargs["stop_sequences"] = list(request.stop)
        return kwargs

    def _translate(self, error: anthropic.AnthropicError) -> Exception:
        if isinstance(error, anthropic.APIStatusError):
            return error_for_status(
                self.provider,
                error.status_code,
                error.message,
                retry_after=parse_retry_after(error.response.headers.get("retry-after")),
            )
        if isinstance(error, anthropic.APIConnectionError):
            return error_for_transport(self.provider, error)
        return RequestValidationError(
            f"{self.provider.value}: {error}", provider=self.provider
        )

    async def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        try:
            message = await self._client.messages.create(**self._kwargs(request))
        except anthropic.AnthropicError as e:
            raise self._translate(e) from e
        elapsed = (time.monotonic() - start) * 1000

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            content=text,
            provider=self.provider,
            model=request.model,
            latency_ms=elapsed,
            usage=TokenUsage(
                input_tokens=getattr(message.usage, "input_tokens", 0) or 0,
                output_tokens=getattr(message.usage, "output_tokens", 0) or 0,
            ),
            finish_reason=message.stop_reason,
            raw=message,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        index = 0
        input_tokens = 0
        output_tokens = 0
        finish_reason: Optional[str] = None

        try:
            events = await self._client.messages.create(**self._kwargs(request), stream=True)
        except anthropic.AnthropicError as e:
            raise self._translate(e) from e

        try:
            async for event in events:
                if event.type == "message_start":
                    input_tokens = getattr(event.message.usage, "input_tokens", 0) or 0
                elif event.type == "content_block_delta":
                    if getattr(event.delta, "type", "") == "text_delta" and event.delta.text:
                        yield StreamChunk(text=event.delta.text, index=index)
                        index += 1
                elif event.type == "message_delta":
                    output_tokens = getattr(event.usage, "output_tokens", 0) or output_tokens
                    finish_reason = getattr(event.delta, "stop_reason", None) or finish_reason
        except anthropic.AnthropicError as e:
            raise self._translate(e) from e
        except httpx.TransportError as e:
            raise error_for_transport(self.provider, e) from e
        finally:
            await events.close()

        yield StreamChunk.final(
            index,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            finish_reason=finish_reason,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._client.close()
