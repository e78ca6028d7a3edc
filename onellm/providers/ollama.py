"""Ollama adapter — local models over the native /api/chat endpoint."""

from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator

from onellm.exceptions import TransientTransportError
from onellm.llm.llm_config import Provider
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.providers.http_adapter import HTTPProviderAdapter

logger = logging.getLogger(__name__)


class OllamaAdapter(HTTPProviderAdapter):
    """Talks to an Ollama server (default http://localhost:11434)."""

    provider = Provider.OLLAMA

    def _payload(self, request: LLMRequest, *, stream: bool) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.stop:
            options["stop"] = list(request.stop)

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages(),
            "stream": stream,
        }
        if options:
            payload["options"] = options
        return payload

    @staticmethod
    def _usage(data: dict[str, Any]) -> TokenUsage:
        return TokenUsage(
            input_tokens=data.get("prompt_eval_count", 0) or 0,
            output_tokens=data.get("eval_count", 0) or 0,
        )

    async def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        data = await self._post_json("/api/chat", self._payload(request, stream=False))
        elapsed = (time.monotonic() - start) * 1000

        return LLMResponse(
            content=data.get("message", {}).get("content", ""),
            provider=self.provider,
            model=request.model,
            latency_ms=elapsed,
            usage=self._usage(data),
            finish_reason=data.get("done_reason"),
            raw=data,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        index = 0
        lines = self._post_lines("/api/chat", self._payload(request, stream=True))
        async with aclosing(lines):
            async for line in lines:
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    raise TransientTransportError(
                        f"ollama: invalid stream record: {line[:200]!r}",
                        provider=self.provider,
                    ) from e
                if not isinstance(data, dict):
                    raise TransientTransportError(
                        f"ollama: invalid stream record: {line[:200]!r}",
                        provider=self.provider,
                    )

                if "error" in data:
                    raise TransientTransportError(
                        f"ollama: {data['error']}", provider=self.provider
                    )

                text = data.get("message", {}).get("content", "")
                if text:
                    yield StreamChunk(text=text, index=index)
                    index += 1

                if data.get("done", False):
                    yield StreamChunk.final(
                        index,
                        usage=self._usage(data),
                        finish_reason=data.get("done_reason"),
                    )
                    return

        # Server closed the stream without a done record.
        yield StreamChunk.final(index)
