"""
Wire tests for the raw-HTTP adapters (Ollama, Gemini) over
httpx.MockTransport.
"""

from __future__ import annotations

import json

import httpx
import pytest

from onellm.exceptions import (
    AuthenticationError,
    OneLLMError,
    ProviderConfigurationError,
    RateLimitedError,
    RequestValidationError,
    RetryExhaustedError,
    TransientTransportError,
)
from onellm.llm.dispatch import Dispatcher
from onellm.llm.llm_config import Provider, ProviderSettings
from onellm.llm.models import LLMRequest
from onellm.llm.registry import ProviderRegistry
from onellm.llm.resilience import ResilienceExecutor
from onellm.llm.router import ModelRouter
from onellm.providers import create_adapter
from onellm.providers.google import GoogleAdapter
from onellm.providers.ollama import OllamaAdapter
from tests.fakes import FAST_RETRY


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _ndjson(*records) -> bytes:
    return b"".join(json.dumps(r).encode() + b"\n" for r in records)


def _sse(*records) -> bytes:
    return b"".join(b"data: " + json.dumps(r).encode() + b"\r\n\r\n" for r in records)


async def _drain(stream):
    return [chunk async for chunk in stream]


# ===========================================================================
# Ollama
# ===========================================================================

class TestOllamaAdapter:
    """Native /api/chat protocol."""

    def _adapter(self, handler, base_url=None) -> OllamaAdapter:
        return OllamaAdapter(
            ProviderSettings(Provider.OLLAMA, base_url=base_url),
            http_client=_client(handler),
        )

    @pytest.mark.asyncio
    async def test_invoke_payload_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "mistral",
                "message": {"role": "assistant", "content": "def add(a, b): return a + b"},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 12,
                "eval_count": 9,
            })

        adapter = self._adapter(handler)
        response = await adapter.invoke(LLMRequest(
            model="mistral",
            user="add two numbers",
            system="be terse",
            temperature=0.2,
            max_tokens=50,
            stop=("```",),
        ))

        assert seen["url"] == "http://localhost:11434/api/chat"
        assert seen["body"]["model"] == "mistral"
        assert seen["body"]["stream"] is False
        assert seen["body"]["messages"][0] == {"role": "system", "content": "be terse"}
        assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 50, "stop": ["```"]}
        assert response.content == "def add(a, b): return a + b"
        assert response.provider is Provider.OLLAMA
        assert response.usage.input_tokens == 12
        assert response.usage.output_tokens == 9
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_custom_base_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"message": {"content": "ok"}, "done": True})

        adapter = self._adapter(handler, base_url="http://gpu-box:11434/")
        await adapter.invoke(LLMRequest(model="m", user="hi"))
        assert seen["url"] == "http://gpu-box:11434/api/chat"

    @pytest.mark.asyncio
    async def test_stream_ndjson(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=_ndjson(
                {"message": {"content": "Hel"}, "done": False},
                {"message": {"content": "lo"}, "done": False},
                {"message": {"content": ""}, "done": True, "done_reason": "stop",
                 "prompt_eval_count": 4, "eval_count": 2},
            ))

        chunks = await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))
        assert [c.text for c in chunks if not c.done] == ["Hel", "lo"]
        assert [c.index for c in chunks] == [0, 1, 2]
        final = chunks[-1]
        assert final.done
        assert final.usage.output_tokens == 2
        assert final.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_stream_without_done_record_still_finishes(self):
        def handler(request):
            return httpx.Response(200, content=_ndjson({"message": {"content": "x"}}))

        chunks = await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))
        assert chunks[-1].done
        assert len(chunks) == 2

    @pytest.mark.asyncio
    async def test_stream_error_record(self):
        def handler(request):
            return httpx.Response(200, content=_ndjson({"error": "model crashed"}))

        with pytest.raises(TransientTransportError, match="model crashed"):
            await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))

    @pytest.mark.asyncio
    async def test_model_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"error": "model 'nope' not found"})

        with pytest.raises(RequestValidationError, match="not found"):
            await self._adapter(handler).invoke(LLMRequest(model="nope", user="hi"))

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        def handler(request):
            return httpx.Response(503, text="overloaded")

        with pytest.raises(TransientTransportError) as exc_info:
            await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_refused_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientTransportError, match="transport failure"):
            await self._adapter(handler).invoke(LLMRequest(model="m", user="hi"))

    @pytest.mark.asyncio
    async def test_invalid_json_is_transient(self):
        def handler(request):
            return httpx.Response(200, text="not json")

        with pytest.raises(TransientTransportError, match="invalid JSON"):
            await self._adapter(handler).invoke(LLMRequest(model="m", user="hi"))

    @pytest.mark.asyncio
    async def test_stream_invalid_json_is_transient(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>proxy</html>\n")

        with pytest.raises(TransientTransportError, match="invalid stream record"):
            await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))

    @pytest.mark.asyncio
    async def test_stream_non_object_record_is_transient(self):
        def handler(request):
            return httpx.Response(200, content=b"42\n")

        with pytest.raises(TransientTransportError, match="invalid stream record"):
            await _drain(self._adapter(handler).stream(LLMRequest(model="m", user="hi")))

    @pytest.mark.asyncio
    async def test_garbled_stream_reaches_dispatch_typed(self):
        opens = []

        def handler(request):
            opens.append(request)
            return httpx.Response(200, content=b"<html>proxy</html>\n")

        dispatcher = Dispatcher(
            ModelRouter(),
            ProviderRegistry({Provider.OLLAMA: self._adapter(handler)}),
            ResilienceExecutor(FAST_RETRY),
        )

        with pytest.raises(OneLLMError) as exc_info:
            await _drain(dispatcher.stream(LLMRequest(model="local/m", user="hi")))

        assert isinstance(exc_info.value, RetryExhaustedError)
        assert isinstance(exc_info.value.last_error, TransientTransportError)
        assert len(opens) == FAST_RETRY.max_attempts

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        adapter = self._adapter(lambda r: httpx.Response(200, json={}))
        client = adapter._client
        await adapter.aclose()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_own_client(self):
        adapter = OllamaAdapter(ProviderSettings(Provider.OLLAMA))
        client = adapter._get_client()
        await adapter.aclose()
        assert client.is_closed


# ===========================================================================
# Gemini
# ===========================================================================

class TestGoogleAdapter:
    """generateContent / streamGenerateContent protocol."""

    def _adapter(self, handler) -> GoogleAdapter:
        return GoogleAdapter(
            ProviderSettings(Provider.GOOGLE, api_key="g-key"),
            http_client=_client(handler),
        )

    @pytest.mark.asyncio
    async def test_invoke(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{
                    "content": {"parts": [{"text": "Hello "}, {"text": "there"}]},
                    "finishReason": "STOP",
                }],
                "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2},
            })

        response = await self._adapter(handler).invoke(LLMRequest(
            model="gemini-1.5-flash", user="hi", system="sys", max_tokens=20, top_p=0.9,
        ))

        assert seen["url"].path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert seen["key"] == "g-key"
        assert seen["body"]["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]
        assert seen["body"]["systemInstruction"] == {"parts": [{"text": "sys"}]}
        assert seen["body"]["generationConfig"] == {"maxOutputTokens": 20, "topP": 0.9}
        assert response.content == "Hello there"
        assert response.finish_reason == "STOP"
        assert response.usage.input_tokens == 5

    @pytest.mark.asyncio
    async def test_stream_sse(self):
        def handler(request):
            assert request.url.path.endswith(":streamGenerateContent")
            assert request.url.params["alt"] == "sse"
            return httpx.Response(
                200,
                content=_sse(
                    {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]},
                    {"candidates": [{"content": {"parts": [{"text": "lo"}]}, "finishReason": "STOP"}],
                     "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 2}},
                ),
                headers={"content-type": "text/event-stream"},
            )

        chunks = await _drain(self._adapter(handler).stream(LLMRequest(model="gemini-pro", user="hi")))
        assert [c.text for c in chunks if not c.done] == ["Hel", "lo"]
        assert chunks[-1].done
        assert chunks[-1].finish_reason == "STOP"
        assert chunks[-1].usage.total_tokens == 5

    @pytest.mark.asyncio
    async def test_bad_key(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"code": 403, "message": "API key not valid"}})

        with pytest.raises(AuthenticationError, match="API key not valid"):
            await self._adapter(handler).invoke(LLMRequest(model="gemini-pro", user="hi"))

    @pytest.mark.asyncio
    async def test_quota(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "quota"}}, headers={"retry-after": "7"})

        with pytest.raises(RateLimitedError) as exc_info:
            await self._adapter(handler).invoke(LLMRequest(model="gemini-pro", user="hi"))
        assert exc_info.value.retry_after == 7.0


class TestCreateAdapter:
    """Factory dispatch by provider."""

    def test_ollama(self):
        assert isinstance(create_adapter(ProviderSettings(Provider.OLLAMA)), OllamaAdapter)

    def test_google(self):
        adapter = create_adapter(ProviderSettings(Provider.GOOGLE, api_key="k"))
        assert isinstance(adapter, GoogleAdapter)
        assert adapter.base_url == "https://generativelanguage.googleapis.com/v1beta"

    def test_mismatched_settings_rejected(self):
        with pytest.raises(ValueError):
            OllamaAdapter(ProviderSettings(Provider.GOOGLE))

    def test_azure_without_endpoint(self):
        with pytest.raises(ProviderConfigurationError):
            create_adapter(ProviderSettings(Provider.AZURE, api_key="k"))
