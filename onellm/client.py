"""
OneLLM client — the public call surface and its builder.

One client fronts every configured backend. Requests are routed by model
string, dispatched on a private background event loop, and retried per
the client's RetryPolicy:

    llm = (
        OneLLM.builder()
        .ollama()
        .openai()                 # key from OPENAI_API_KEY
        .build()
    )

    request = LLMRequest.builder().model("local/gemma3:270m").user("hi").build()

    response = llm.complete(request)                 # blocking
    future = llm.complete_async(request)             # concurrent.futures.Future
    response = await llm.acomplete(request)          # from async code
    handle = llm.stream_complete(request, handler)   # callbacks
    async for chunk in llm.astream(request): ...     # async iterator

    llm.close()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import queue
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Iterable, Iterator, Optional

import httpx
from dotenv import load_dotenv

from onellm.config.loader import load_settings
from onellm.config.schema import OneLLMSettings
from onellm.exceptions import ClientClosedError, ProviderConfigurationError
from onellm.llm.dispatch import DEFAULT_MAX_CONCURRENCY, Dispatcher
from onellm.llm.llm_config import (
    DEFAULT_AZURE_API_VERSION,
    DEFAULT_RETRY_POLICY,
    Provider,
    ProviderSettings,
    RetryPolicy,
    RoutingRule,
)
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk
from onellm.llm.registry import ProviderRegistry
from onellm.llm.resilience import ResilienceExecutor
from onellm.llm.router import ModelRouter, Route
from onellm.llm.runtime import BackgroundRuntime
from onellm.llm.streaming import StreamHandle, StreamHandler
from onellm.providers import create_adapter
from onellm.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


# Environment variables holding each provider's key, first match wins.
API_KEY_ENV: dict[Provider, tuple[str, ...]] = {
    Provider.OPENAI: ("OPENAI_API_KEY",),
    Provider.ANTHROPIC: ("ANTHROPIC_API_KEY",),
    Provider.GOOGLE: ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    Provider.AZURE: ("AZURE_OPENAI_API_KEY",),
    Provider.GROQ: ("GROQ_API_KEY",),
    Provider.CEREBRAS: ("CEREBRAS_API_KEY",),
    Provider.OPENROUTER: ("OPENROUTER_API_KEY",),
    Provider.XAI: ("XAI_API_KEY",),
    Provider.COPILOT: ("COPILOT_API_KEY", "GITHUB_TOKEN"),
}

BASE_URL_ENV: dict[Provider, tuple[str, ...]] = {
    Provider.OPENAI: ("OPENAI_BASE_URL",),
    Provider.AZURE: ("AZURE_OPENAI_ENDPOINT",),
    Provider.OLLAMA: ("OLLAMA_BASE_URL", "OLLAMA_HOST"),
}

# Providers that run without credentials.
KEYLESS_PROVIDERS = frozenset({Provider.OLLAMA})


def _first_env(names: Iterable[str]) -> Optional[str]:
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


def _normalize_host(url: str) -> str:
    # OLLAMA_HOST is commonly "host:port" without a scheme
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OneLLM:
    """
    Thread-safe LLM client. Build with ``OneLLM.builder()``.

    Blocking methods must not be called from inside a stream callback:
    callbacks run on the client's own loop thread.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        runtime: Optional[BackgroundRuntime] = None,
    ):
        self._dispatcher = dispatcher
        self._runtime = runtime or BackgroundRuntime()

    @staticmethod
    def builder() -> OneLLMBuilder:
        return OneLLMBuilder()

    # --- Introspection ---

    @property
    def router(self) -> ModelRouter:
        return self._dispatcher.router

    @property
    def registry(self) -> ProviderRegistry:
        return self._dispatcher.registry

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._dispatcher.executor.policy

    @property
    def closed(self) -> bool:
        return self._runtime.closed

    def list_providers(self) -> frozenset[Provider]:
        """Providers with a configured adapter."""
        return self._dispatcher.registry.list_providers()

    def resolve(self, model: str) -> Provider:
        """Provider that would serve ``model``, whether configured or not."""
        return self._dispatcher.router.resolve(model)

    def route(self, model: str) -> Route:
        """Provider, native model name and matching rule for ``model``."""
        return self._dispatcher.router.route(model)

    # --- Completion ---

    def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Blocking completion.

        Raises:
            ConfigurationError: routing failed or the provider is not configured
            ProviderError: terminal backend failure
            RetryExhaustedError: every allowed attempt failed transiently
            ClientClosedError: the client was closed before or during the call
        """
        self._check_not_runtime_thread("complete")
        future = self.complete_async(request)
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            if self.closed:
                raise ClientClosedError("Client closed while the call was in flight") from None
            raise
        except KeyboardInterrupt:
            future.cancel()
            raise

    def complete_async(self, request: LLMRequest) -> concurrent.futures.Future:
        """
        Start a completion and return immediately.

        Cancelling the returned future cancels the in-flight HTTP request;
        cancelling a finished future is a no-op.
        """
        return self._runtime.submit(self._dispatcher.complete(request))

    async def acomplete(self, request: LLMRequest) -> LLMResponse:
        """Await a completion from any event loop."""
        return await asyncio.wrap_future(self.complete_async(request))

    # --- Streaming ---

    def stream_complete(self, request: LLMRequest, handler: StreamHandler) -> StreamHandle:
        """
        Start a streaming completion delivering to ``handler``.

        Never raises: every failure, routing errors included, reaches
        ``handler.on_error``.
        """
        handle = StreamHandle(handler)
        try:
            future = self._runtime.submit(self._dispatcher.run_stream(request, handle))
        except ClientClosedError as e:
            handle.deliver_error(e)
            handle.mark_finished()
            return handle
        future.add_done_callback(lambda _f: handle.mark_finished())
        return handle

    async def astream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """
        Async-iterate a streaming completion from any event loop.

        Yields content chunks, then the final ``done`` chunk. Failures are
        raised; leaving the loop early cancels the underlying request.
        """
        loop = asyncio.get_running_loop()
        if loop is self._runtime.loop:
            async for chunk in self._dispatcher.stream(request):
                yield chunk
            return

        inbox: asyncio.Queue = asyncio.Queue()

        def post(kind: str, payload=None) -> None:
            loop.call_soon_threadsafe(inbox.put_nowait, (kind, payload))

        future = self._runtime.submit(self._pump(request, post))
        try:
            while True:
                kind, payload = await inbox.get()
                if kind == "chunk":
                    yield payload
                elif kind == "error":
                    raise payload
                elif kind == "cancelled":
                    raise ClientClosedError("Client closed during stream")
                else:
                    return
        finally:
            future.cancel()

    def stream(self, request: LLMRequest, *, timeout: Optional[float] = None) -> Iterator[StreamChunk]:
        """
        Blocking iterator over a streaming completion.

        ``timeout`` bounds the wait for each chunk. Closing the iterator
        early cancels the underlying request.
        """
        self._check_not_runtime_thread("stream")
        inbox: queue.Queue = queue.Queue()
        future = self._runtime.submit(
            self._pump(request, lambda kind, payload=None: inbox.put((kind, payload)))
        )
        try:
            while True:
                try:
                    kind, payload = inbox.get(timeout=timeout)
                except queue.Empty:
                    raise TimeoutError(f"No stream chunk within {timeout}s") from None
                if kind == "chunk":
                    yield payload
                elif kind == "error":
                    raise payload
                elif kind == "cancelled":
                    raise ClientClosedError("Client closed during stream")
                else:
                    return
        finally:
            future.cancel()

    async def _pump(self, request: LLMRequest, post) -> None:
        try:
            async for chunk in self._dispatcher.stream(request):
                post("chunk", chunk)
        except asyncio.CancelledError:
            post("cancelled")
            raise
        except Exception as e:
            post("error", e)
        else:
            post("end")

    # --- Lifecycle ---

    def close(self) -> None:
        """
        Cancel in-flight calls, release provider connections and stop the
        runtime thread. Idempotent and safe from any thread.
        """
        if self._runtime.shutdown(cleanup=self._dispatcher.registry.aclose):
            logger.info("client_closed")

    def __enter__(self) -> OneLLM:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> OneLLM:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self.close)

    def _check_not_runtime_thread(self, method: str) -> None:
        if self._runtime.in_runtime_thread():
            raise RuntimeError(
                f"OneLLM.{method}() would block the client's event loop; "
                f"use complete_async() or stream_complete() from callbacks"
            )

    def __repr__(self) -> str:
        providers = sorted(p.value for p in self.list_providers())
        return f"OneLLM(providers={providers}, closed={self.closed})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class OneLLMBuilder:
    """
    Fluent configuration for ``OneLLM``.

    Provider methods record settings only; credentials are checked and
    adapters constructed in ``build()``.
    """

    def __init__(self) -> None:
        self._settings: dict[Provider, ProviderSettings] = {}
        self._custom: dict[Provider, ProviderAdapter] = {}
        self._policy: RetryPolicy = DEFAULT_RETRY_POLICY
        self._max_concurrency = DEFAULT_MAX_CONCURRENCY
        self._rules: Optional[list[RoutingRule]] = None
        self._http_client: Optional[httpx.AsyncClient] = None

    # --- Providers ---

    def provider(
        self,
        provider: Provider | str,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        api_version: Optional[str] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ) -> OneLLMBuilder:
        """Enable any provider by name. Later calls replace earlier ones."""
        provider = Provider.parse(provider)
        self._settings[provider] = ProviderSettings(
            provider=provider,
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            extra_headers=dict(extra_headers or {}),
            api_version=api_version,
        )
        return self

    def openai(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.OPENAI, api_key=api_key, base_url=base_url, **options)

    def anthropic(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.ANTHROPIC, api_key=api_key, base_url=base_url, **options)

    def google(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.GOOGLE, api_key=api_key, base_url=base_url, **options)

    def azure(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        api_version: Optional[str] = None,
        **options,
    ) -> OneLLMBuilder:
        return self.provider(
            Provider.AZURE,
            api_key=api_key,
            base_url=endpoint,
            api_version=api_version,
            **options,
        )

    def groq(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.GROQ, api_key=api_key, base_url=base_url, **options)

    def cerebras(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.CEREBRAS, api_key=api_key, base_url=base_url, **options)

    def ollama(self, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.OLLAMA, base_url=base_url, **options)

    def openrouter(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.OPENROUTER, api_key=api_key, base_url=base_url, **options)

    def xai(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.XAI, api_key=api_key, base_url=base_url, **options)

    def copilot(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **options) -> OneLLMBuilder:
        return self.provider(Provider.COPILOT, api_key=api_key, base_url=base_url, **options)

    def adapter(self, adapter: ProviderAdapter) -> OneLLMBuilder:
        """Register a pre-built adapter; it replaces any settings for its provider."""
        self._custom[adapter.provider] = adapter
        return self

    # --- Behaviour ---

    def retry_policy(self, policy: RetryPolicy) -> OneLLMBuilder:
        self._policy = policy
        return self

    def max_concurrency(self, limit: int) -> OneLLMBuilder:
        if limit < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._max_concurrency = limit
        return self

    def routing_rules(self, rules: Iterable[RoutingRule]) -> OneLLMBuilder:
        """Replace the default routing table. Order is priority."""
        self._rules = list(rules)
        return self

    def http_client(self, client: httpx.AsyncClient) -> OneLLMBuilder:
        """Share one httpx client across adapters (proxies, test transports)."""
        self._http_client = client
        return self

    # --- Bulk configuration ---

    def from_env(self) -> OneLLMBuilder:
        """
        Enable every provider whose credentials are in the environment.

        Loads ``.env`` first. Azure additionally needs
        AZURE_OPENAI_ENDPOINT; Ollama is enabled when OLLAMA_BASE_URL or
        OLLAMA_HOST is set.
        """
        load_dotenv()

        for provider, names in API_KEY_ENV.items():
            if provider in self._settings or not _first_env(names):
                continue
            if provider is Provider.AZURE and not _first_env(BASE_URL_ENV[Provider.AZURE]):
                logger.warning("azure_key_without_endpoint")
                continue
            self.provider(provider)

        if Provider.OLLAMA not in self._settings and _first_env(BASE_URL_ENV[Provider.OLLAMA]):
            self.ollama()

        max_attempts = os.environ.get("ONELLM_MAX_ATTEMPTS")
        attempt_timeout = os.environ.get("ONELLM_ATTEMPT_TIMEOUT")
        if max_attempts or attempt_timeout:
            try:
                self._policy = replace(
                    self._policy,
                    max_attempts=int(max_attempts) if max_attempts else self._policy.max_attempts,
                    attempt_timeout=(
                        float(attempt_timeout) if attempt_timeout else self._policy.attempt_timeout
                    ),
                )
            except ValueError as e:
                raise ProviderConfigurationError(f"Invalid retry settings in environment: {e}") from e

        max_concurrency = os.environ.get("ONELLM_MAX_CONCURRENCY")
        if max_concurrency:
            try:
                self.max_concurrency(int(max_concurrency))
            except ValueError as e:
                raise ProviderConfigurationError(f"Invalid ONELLM_MAX_CONCURRENCY: {e}") from e

        return self

    def from_settings(self, settings: OneLLMSettings | str | Path) -> OneLLMBuilder:
        """Apply a settings object or YAML settings file."""
        if not isinstance(settings, OneLLMSettings):
            settings = load_settings(settings)

        for provider_settings in settings.provider_settings():
            self._settings[provider_settings.provider] = provider_settings
        self._policy = settings.retry.to_policy()
        self._max_concurrency = settings.max_concurrency
        rules = settings.routing_rules()
        if rules is not None:
            self._rules = rules
        return self

    # --- Build ---

    def build(self) -> OneLLM:
        """
        Validate configuration and construct the client.

        Raises:
            RoutingConfigurationError: invalid routing table
            ProviderConfigurationError: a provider lacks credentials or endpoint
        """
        router = ModelRouter(self._rules)

        adapters: dict[Provider, ProviderAdapter] = {}
        for provider, settings in self._settings.items():
            if provider in self._custom:
                continue
            adapters[provider] = create_adapter(
                self._complete_settings(settings),
                http_client=self._http_client,
            )
        adapters.update(self._custom)

        registry = ProviderRegistry(adapters)
        dispatcher = Dispatcher(
            router,
            registry,
            ResilienceExecutor(self._policy),
            max_concurrency=self._max_concurrency,
        )
        logger.info(
            "client_built",
            extra={
                "providers": sorted(p.value for p in adapters),
                "max_attempts": self._policy.max_attempts,
                "max_concurrency": self._max_concurrency,
            },
        )
        return OneLLM(dispatcher)

    @staticmethod
    def _complete_settings(settings: ProviderSettings) -> ProviderSettings:
        """Fill key / endpoint from the environment and check they are present."""
        provider = settings.provider
        api_key = settings.api_key or _first_env(API_KEY_ENV.get(provider, ()))
        base_url = settings.base_url or _first_env(BASE_URL_ENV.get(provider, ()))
        api_version = settings.api_version

        if provider is Provider.OLLAMA and base_url:
            base_url = _normalize_host(base_url)
        if provider is Provider.AZURE:
            api_version = (
                api_version
                or os.environ.get("AZURE_OPENAI_API_VERSION")
                or DEFAULT_AZURE_API_VERSION
            )
            if not base_url:
                raise ProviderConfigurationError(
                    "Azure OpenAI requires an endpoint "
                    "(pass endpoint= or set AZURE_OPENAI_ENDPOINT)",
                    provider=provider,
                )

        if provider not in KEYLESS_PROVIDERS and not api_key:
            env_names = " or ".join(API_KEY_ENV.get(provider, ())) or "api_key"
            raise ProviderConfigurationError(
                f"No API key for '{provider.value}'. Pass api_key= or set {env_names}.",
                provider=provider,
            )

        return replace(settings, api_key=api_key, base_url=base_url, api_version=api_version)
