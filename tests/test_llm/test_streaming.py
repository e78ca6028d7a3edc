"""
Tests for the stream handler contract and StreamHandle.

Covers:
1. StreamHandle — terminal-callback exclusivity, cancel semantics
2. CallbackStreamHandler — optional callables
3. collect_stream — text accumulation
"""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from onellm.exceptions import StreamCancelledError, StreamFailureError, TransientTransportError
from onellm.llm.llm_config import Provider
from onellm.llm.models import LLMResponse, StreamChunk, TokenUsage
from onellm.llm.streaming import (
    CallbackStreamHandler,
    StreamHandle,
    StreamHandler,
    collect_stream,
)


def _response(text: str = "Hello") -> LLMResponse:
    return LLMResponse(content=text, provider=Provider.OLLAMA, model="m")


@pytest.fixture
def handler():
    return MagicMock(spec=StreamHandler)


class TestStreamHandle:
    """Delivery rules enforced by the handle."""

    def test_chunks_then_complete(self, handler):
        handle = StreamHandle(handler)
        handle.deliver_chunk(StreamChunk("Hel", 0))
        handle.deliver_chunk(StreamChunk("lo", 1))
        handle.deliver_complete(_response())

        assert [c.args[0].text for c in handler.on_chunk.call_args_list] == ["Hel", "lo"]
        handler.on_complete.assert_called_once()
        handler.on_error.assert_not_called()
        assert handle.chunks_delivered == 2
        assert handle.done
        assert handle.wait(0)

    def test_only_first_terminal_callback_runs(self, handler):
        handle = StreamHandle(handler)
        handle.deliver_complete(_response())
        handle.deliver_error(StreamFailureError("late"))
        handle.deliver_complete(_response("again"))

        handler.on_complete.assert_called_once()
        handler.on_error.assert_not_called()

    def test_error_then_nothing(self, handler):
        handle = StreamHandle(handler)
        handle.deliver_error(TransientTransportError("reset"))
        handle.deliver_chunk(StreamChunk("x"))
        handle.deliver_complete(_response())

        handler.on_error.assert_called_once()
        handler.on_chunk.assert_not_called()
        handler.on_complete.assert_not_called()
        assert isinstance(handle.error, TransientTransportError)

    def test_no_chunks_or_complete_after_cancel(self, handler):
        handle = StreamHandle(handler)
        handle.deliver_chunk(StreamChunk("a"))
        assert handle.cancel() is True

        handle.deliver_chunk(StreamChunk("b"))
        handle.deliver_complete(_response())

        assert handler.on_chunk.call_count == 1
        handler.on_complete.assert_not_called()
        handler.on_error.assert_called_once()
        assert isinstance(handler.on_error.call_args.args[0], StreamCancelledError)
        assert handle.cancelled

    def test_error_after_cancel_becomes_cancellation(self, handler):
        handle = StreamHandle(handler)
        handle.cancel()
        handle.deliver_error(TransientTransportError("aborted"))
        assert isinstance(handler.on_error.call_args.args[0], StreamCancelledError)

    def test_cancel_after_finish_is_noop(self, handler):
        handle = StreamHandle(handler)
        handle.deliver_complete(_response())
        assert handle.cancel() is False
        assert not handle.cancelled

    def test_second_cancel_returns_false(self, handler):
        handle = StreamHandle(handler)
        assert handle.cancel() is True
        assert handle.cancel() is False

    def test_cancel_schedules_task_cancel_on_loop(self, handler):
        handle = StreamHandle(handler)
        loop = MagicMock()
        loop.is_closed.return_value = False
        task = MagicMock()
        task.get_loop.return_value = loop

        assert handle.bind(task) is True
        handle.cancel()
        loop.call_soon_threadsafe.assert_called_once_with(task.cancel)

    def test_bind_after_cancel_refused(self, handler):
        handle = StreamHandle(handler)
        handle.cancel()
        task = MagicMock()
        assert handle.bind(task) is False

    def test_callback_exception_in_complete_is_contained(self):
        def boom(response):
            raise RuntimeError("user bug")

        handle = StreamHandle(CallbackStreamHandler(on_complete=boom))
        handle.deliver_complete(_response())
        assert handle.done

    def test_wait_times_out_while_running(self, handler):
        assert StreamHandle(handler).wait(timeout=0.01) is False

    def test_wait_unblocks_from_other_thread(self, handler):
        handle = StreamHandle(handler)
        threading.Timer(0.02, handle.deliver_complete, args=(_response(),)).start()
        assert handle.wait(timeout=2)


class TestCallbackStreamHandler:
    """Plain-callable handler."""

    def test_missing_callbacks_are_noops(self):
        handler = CallbackStreamHandler()
        handler.on_chunk(StreamChunk("x"))
        handler.on_complete(_response())
        handler.on_error(StreamFailureError("x"))

    def test_forwards_to_callables(self):
        seen = []
        CallbackStreamHandler(on_chunk=seen.append).on_chunk(StreamChunk("x"))
        assert seen[0].text == "x"


class TestCollectStream:
    """Accumulating a stream into text."""

    @pytest.mark.asyncio
    async def test_collects_text_and_final(self):
        async def chunks():
            yield StreamChunk("Hello", 0)
            yield StreamChunk(" world", 1)
            yield StreamChunk.final(2, usage=TokenUsage(1, 2), finish_reason="stop")

        text, final = await collect_stream(chunks())
        assert text == "Hello world"
        assert final.done
        assert final.usage.total_tokens == 3

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        async def chunks():
            return
            yield  # pragma: no cover

        text, final = await collect_stream(chunks())
        assert text == ""
        assert final.done

    @pytest.mark.asyncio
    async def test_usable_with_asyncio_tasks(self):
        async def chunks():
            for i in range(3):
                await asyncio.sleep(0)
                yield StreamChunk(str(i), i)

        text, _ = await collect_stream(chunks())
        assert text == "012"
