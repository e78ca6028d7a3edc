"""Google Gemini adapter — generateContent / streamGenerateContent over httpx."""

from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from onellm.llm.llm_config import Provider
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.providers.http_adapter import HTTPProviderAdapter

logger = logging.getLogger(__name__)


class GoogleAdapter(HTTPProviderAdapter):
    """Gemini REST API (v1beta). Authenticates with the x-goog-api-key header."""

    provider = Provider.GOOGLE

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.settings.api_key or "",
            **self.settings.extra_headers,
        }

    def _payload(self, request: LLMRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.user}]}],
        }
        if request.system:
            payload["systemInstruction"] = {"parts": [{"text": request.system}]}

        generation: dict[str, Any] = {}
        if request.temperature is not None:
            generation["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation["maxOutputTokens"] = request.max_tokens
        if request.top_p is not None:
            generation["topP"] = request.top_p
        if request.stop:
            generation["stopSequences"] = list(request.stop)
        if generation:
            payload["generationConfig"] = generation
        return payload

    @staticmethod
    def _text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    @staticmethod
    def _finish_reason(data: dict[str, Any]) -> Optional[str]:
        candidates = data.get("candidates") or []
        return candidates[0].get("finishReason") if candidates else None

    @staticmethod
    def _usage(data: dict[str, Any]) -> Optional[TokenUsage]:
        meta = data.get("usageMetadata")
        if not meta:
            return None
        return TokenUsage(
            input_tokens=meta.get("promptTokenCount", 0) or 0,
            output_tokens=meta.get("candidatesTokenCount", 0) or 0,
        )

    async def invoke(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        data = await self._post_json(
            f"/models/{request.model}:generateContent", self._payload(request)
        )
        elapsed = (time.monotonic() - start) * 1000

        return LLMResponse(
            content=self._text(data),
            provider=self.provider,
            model=request.model,
            latency_ms=elapsed,
            usage=self._usage(data) or TokenUsage(),
            finish_reason=self._finish_reason(data),
            raw=data,
        )

    async def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        index = 0
        usage: Optional[TokenUsage] = None
        finish_reason: Optional[str] = None

        lines = self._post_lines(
            f"/models/{request.model}:streamGenerateContent",
            self._payload(request),
            params={"alt": "sse"},
        )
        async with aclosing(lines):
            async for line in lines:
                if not line.startswith("data:"):
                    continue
                try:
                    data = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    logger.debug("gemini_stream_unparseable_line", extra={"line": line[:200]})
                    continue

                text = self._text(data)
                if text:
                    yield StreamChunk(text=text, index=index)
                    index += 1
                usage = self._usage(data) or usage
                finish_reason = self._finish_reason(data) or finish_reason

        yield StreamChunk.final(index, usage=usage, finish_reason=finish_reason)
