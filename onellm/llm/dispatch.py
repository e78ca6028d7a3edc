"""
Dispatch Core — Router + Registry + Resilience Executor behind one path.

Every execution mode goes through the same steps:

    route (ModelRouter) → look up adapter (ProviderRegistry)
        → execute with retry/timeout (ResilienceExecutor)

- ``complete`` returns a normalized LLMResponse.
- ``stream`` yields StreamChunks; only opening the stream (up to and
  including the first chunk) is retried. Once a chunk has been handed
  out, a failure becomes a StreamFailureError.
- ``run_stream`` drives ``stream`` into a StreamHandle for the callback
  API.

All coroutines here run on the client's runtime loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import aclosing
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Optional

from onellm.exceptions import (
    ConfigurationError,
    OneLLMError,
    StreamCancelledError,
    StreamFailureError,
)
from onellm.llm.llm_config import Provider
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.llm.registry import ProviderRegistry
from onellm.llm.resilience import ResilienceExecutor, RetryState
from onellm.llm.router import ModelRouter
from onellm.llm.streaming import StreamHandle
from onellm.observability.logging_config import get_call_id, reset_call_id, set_call_id

if TYPE_CHECKING:
    from onellm.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 16


class CallState(str, Enum):
    CREATED = "created"
    ROUTING = "routing"
    ROUTING_FAILED = "routing_failed"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class _Call:
    """Per-call bookkeeping: id, state, attempt count. Never shared."""

    def __init__(self, request: LLMRequest, mode: str):
        self.call_id = uuid.uuid4().hex[:12]
        self.mode = mode
        self.requested_model = request.model
        self.provider: Optional[Provider] = None
        self.model = request.model
        self.attempts = 0
        self.started = time.monotonic()
        self.state = CallState.CREATED

    def transition(self, state: CallState, **extra) -> None:
        self.state = state
        logger.debug(
            "llm_call_state",
            extra={
                "call_id": self.call_id,
                "mode": self.mode,
                "state": state.value,
                "provider": self.provider.value if self.provider else "",
                "model": self.model,
                **extra,
            },
        )

    def begin_attempt(self) -> None:
        self.attempts += 1
        self.transition(CallState.DISPATCHED, attempt=self.attempts)

    def on_retry(self, state: RetryState, delay: float) -> None:
        self.transition(CallState.RETRYING, attempt=state.attempt, delay_s=round(delay, 3))

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class Dispatcher:
    """
    Executes LLM requests against the configured providers.

    Holds only read-only collaborators plus a semaphore bounding the
    number of in-flight dispatches; calls never share mutable state.
    """

    def __init__(
        self,
        router: ModelRouter,
        registry: ProviderRegistry,
        executor: Optional[ResilienceExecutor] = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._router = router
        self._registry = registry
        self._executor = executor or ResilienceExecutor()
        self._max_concurrency = max_concurrency
        self._slots = asyncio.Semaphore(max_concurrency)

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def executor(self) -> ResilienceExecutor:
        return self._executor

    # --- Routing ---

    def _resolve(self, call: _Call, request: LLMRequest) -> tuple["ProviderAdapter", LLMRequest]:
        call.transition(CallState.ROUTING)
        try:
            route = self._router.route(request.model)
            call.provider = route.provider
            call.model = route.model
            adapter = self._registry.get(route.provider)
        except ConfigurationError as e:
            call.transition(CallState.ROUTING_FAILED, error_type=type(e).__name__)
            raise
        return adapter, request.with_model(route.model)

    # --- Blocking / future mode ---

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Route, invoke with retries, and return the normalized response."""
        call = _Call(request, mode="complete")
        token = set_call_id(call.call_id)
        try:
            adapter, native = self._resolve(call, request)

            def attempt():
                call.begin_attempt()
                return adapter.invoke(native)

            try:
                async with self._slots:
                    response = await self._executor.execute(
                        attempt,
                        provider=adapter.provider,
                        model=native.model,
                        on_retry=call.on_retry,
                    )
            except asyncio.CancelledError:
                call.transition(CallState.FAILED, reason="cancelled")
                raise
            except Exception as e:
                call.transition(CallState.FAILED, error_type=type(e).__name__)
                raise

            response = response.with_dispatch_info(
                latency_ms=call.elapsed_ms, attempts=call.attempts
            )
            call.transition(CallState.SUCCEEDED)
            logger.info(
                "llm_call_completed",
                extra={
                    "provider": adapter.provider.value,
                    "model": native.model,
                    "attempts": call.attempts,
                    "tokens": response.total_tokens,
                    "latency_ms": round(response.latency_ms, 1),
                },
            )
            return response
        finally:
            reset_call_id(token)

    # --- Streaming mode ---

    def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """
        Yield content chunks in emission order, then one ``done`` chunk.

        Routing and connection failures are raised before the first
        chunk; later failures raise StreamFailureError.
        """
        return self._stream(_Call(request, mode="stream"), request)

    async def _stream(self, call: _Call, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        # Pull-based consumers get no other binding; run_stream already has one.
        previous = get_call_id()
        set_call_id(call.call_id)
        try:
            async with aclosing(self._stream_chunks(call, request)) as chunks:
                async for chunk in chunks:
                    yield chunk
        finally:
            set_call_id(previous)

    async def _stream_chunks(self, call: _Call, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        adapter, native = self._resolve(call, request)

        async def open_stream():
            call.begin_attempt()
            return await self._open_stream(adapter, native)

        async with self._slots:
            try:
                chunks, first = await self._executor.execute(
                    open_stream,
                    provider=adapter.provider,
                    model=native.model,
                    on_retry=call.on_retry,
                )
            except asyncio.CancelledError:
                call.transition(CallState.FAILED, reason="cancelled")
                raise
            except Exception as e:
                call.transition(CallState.FAILED, error_type=type(e).__name__)
                raise

            delivered = 0
            try:
                chunk = first
                while True:
                    yield chunk
                    if chunk.done:
                        break
                    delivered += 1
                    try:
                        chunk = await chunks.__anext__()
                    except StopAsyncIteration:
                        chunk = StreamChunk.final(delivered)
            except (asyncio.CancelledError, GeneratorExit):
                call.transition(CallState.FAILED, reason="cancelled", chunks=delivered)
                raise
            except StreamFailureError:
                call.transition(CallState.FAILED, chunks=delivered)
                raise
            except Exception as e:
                call.transition(CallState.FAILED, error_type=type(e).__name__, chunks=delivered)
                raise StreamFailureError(
                    f"Stream aborted after {delivered} chunk(s): {e}",
                    provider=adapter.provider,
                    details={"chunks_delivered": delivered},
                ) from e
            finally:
                await chunks.aclose()

        call.transition(CallState.SUCCEEDED, chunks=delivered)

    @staticmethod
    async def _open_stream(
        adapter: "ProviderAdapter",
        request: LLMRequest,
    ) -> tuple[AsyncIterator[StreamChunk], StreamChunk]:
        """Start the adapter stream and wait for its first chunk."""
        chunks = adapter.stream(request)
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            return chunks, StreamChunk.final(0)
        except BaseException:
            await chunks.aclose()
            raise
        return chunks, first

    async def run_stream(self, request: LLMRequest, handle: StreamHandle) -> None:
        """Drive one stream into ``handle``. Never raises OneLLM errors."""
        call = _Call(request, mode="stream_callback")
        token = set_call_id(call.call_id)
        try:
            if not handle.bind(asyncio.current_task()):
                handle.deliver_error(StreamCancelledError("Stream cancelled before start"))
                return

            parts: list[str] = []
            final: Optional[StreamChunk] = None
            stream = self._stream(call, request)
            try:
                async for chunk in stream:
                    if chunk.done:
                        final = chunk
                        continue
                    parts.append(chunk.text)
                    try:
                        handle.deliver_chunk(chunk)
                    except Exception as e:
                        raise StreamFailureError(
                            f"Stream handler raised: {e}",
                            provider=call.provider,
                            details={"chunks_delivered": len(parts) - 1},
                        ) from e
            finally:
                await stream.aclose()

            final = final or StreamChunk.final(len(parts))
            response = LLMResponse(
                content="".join(parts),
                provider=call.provider,
                model=call.model,
                latency_ms=call.elapsed_ms,
                usage=final.usage or TokenUsage(),
                finish_reason=final.finish_reason,
                attempts=call.attempts,
            )
            logger.info(
                "stream_completed",
                extra={
                    "provider": call.provider.value,
                    "model": call.model,
                    "chunks": len(parts),
                    "attempts": call.attempts,
                    "latency_ms": round(response.latency_ms, 1),
                },
            )
            handle.deliver_complete(response)

        except asyncio.CancelledError:
            handle.deliver_error(StreamCancelledError(
                "Stream cancelled",
                provider=call.provider,
                details={"chunks_delivered": handle.chunks_delivered},
            ))
            raise
        except OneLLMError as e:
            logger.warning(
                "stream_failed",
                extra={
                    "provider": call.provider.value if call.provider else "",
                    "model": call.model,
                    "error_type": type(e).__name__,
                    "error": str(e)[:200],
                },
            )
            handle.deliver_error(e)
        except Exception as e:
            logger.exception("stream_unexpected_error")
            handle.deliver_error(StreamFailureError(
                f"Unexpected stream error: {e}", provider=call.provider
            ))
        finally:
            handle.mark_finished()
            reset_call_id(token)
