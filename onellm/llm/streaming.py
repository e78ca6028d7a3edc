"""
Streaming callbacks — handler contract and the cancellable stream handle.

The dispatch core pushes chunks through a ``StreamHandle`` which enforces
the delivery contract on the handler:

- ``on_chunk`` once per content chunk, in emission order, never
  concurrently (always from the runtime loop thread)
- exactly one of ``on_complete`` / ``on_error`` when the stream ends
- after ``cancel()`` returns, no further ``on_chunk`` or ``on_complete``;
  at most one ``on_error(StreamCancelledError)``

Usage:
    class Printer(StreamHandler):
        def on_chunk(self, chunk):
            print(chunk.text, end="", flush=True)

        def on_error(self, error):
            print(f"\\nstream failed: {error}")

    handle = llm.stream_complete(request, Printer())
    handle.wait(timeout=60)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Optional

from onellm.exceptions import OneLLMError, StreamCancelledError
from onellm.llm.models import LLMResponse, StreamChunk

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class StreamHandler:
    """Callback sink for a stream. Override what you need."""

    def on_chunk(self, chunk: StreamChunk) -> None:
        pass

    def on_complete(self, response: LLMResponse) -> None:
        pass

    def on_error(self, error: OneLLMError) -> None:
        pass


class CallbackStreamHandler(StreamHandler):
    """StreamHandler built from plain callables."""

    def __init__(
        self,
        on_chunk: Optional[Callable[[StreamChunk], None]] = None,
        on_complete: Optional[Callable[[LLMResponse], None]] = None,
        on_error: Optional[Callable[[OneLLMError], None]] = None,
    ):
        self._on_chunk = on_chunk
        self._on_complete = on_complete
        self._on_error = on_error

    def on_chunk(self, chunk: StreamChunk) -> None:
        if self._on_chunk is not None:
            self._on_chunk(chunk)

    def on_complete(self, response: LLMResponse) -> None:
        if self._on_complete is not None:
            self._on_complete(response)

    def on_error(self, error: OneLLMError) -> None:
        if self._on_error is not None:
            self._on_error(error)


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------

class StreamHandle:
    """
    Caller-side control for one running stream.

    Thread-safe. ``cancel()`` may be called from any thread, including
    from inside a handler callback.
    """

    def __init__(self, handler: StreamHandler):
        self._handler = handler
        # Reentrant: a callback may call cancel() on its own handle.
        self._lock = threading.RLock()
        self._finished = threading.Event()
        self._cancelled = False
        self._terminal = False
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._response: Optional[LLMResponse] = None
        self._error: Optional[OneLLMError] = None
        self._chunks_delivered = 0

    # --- Caller API ---

    def cancel(self) -> bool:
        """
        Stop chunk delivery and abort the underlying request.

        Returns False if the stream already finished or was already
        cancelled.
        """
        with self._lock:
            if self._terminal or self._cancelled:
                return False
            self._cancelled = True
            task, loop = self._task, self._loop

        if task is not None and loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the stream has finished. False on timeout."""
        return self._finished.wait(timeout)

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def response(self) -> Optional[LLMResponse]:
        return self._response

    @property
    def error(self) -> Optional[OneLLMError]:
        return self._error

    @property
    def chunks_delivered(self) -> int:
        return self._chunks_delivered

    # --- Dispatcher side (runtime loop thread) ---

    def bind(self, task: asyncio.Task) -> bool:
        """Attach the running task. False if cancel() already happened."""
        with self._lock:
            self._task = task
            self._loop = task.get_loop()
            return not self._cancelled

    def deliver_chunk(self, chunk: StreamChunk) -> None:
        with self._lock:
            if self._cancelled or self._terminal:
                return
            self._handler.on_chunk(chunk)
            self._chunks_delivered += 1

    def deliver_complete(self, response: LLMResponse) -> None:
        with self._lock:
            if self._terminal:
                return
            if self._cancelled:
                self._deliver_error_locked(self._cancellation())
                return
            self._terminal = True
            self._response = response
            try:
                self._handler.on_complete(response)
            except Exception:
                logger.exception("stream_on_complete_raised")
            finally:
                self._finished.set()

    def deliver_error(self, error: OneLLMError) -> None:
        with self._lock:
            if self._terminal:
                return
            if self._cancelled and not isinstance(error, StreamCancelledError):
                error = self._cancellation()
            self._deliver_error_locked(error)

    def mark_finished(self) -> None:
        """Unblock wait() even if no terminal callback could run."""
        self._finished.set()

    def _deliver_error_locked(self, error: OneLLMError) -> None:
        self._terminal = True
        self._error = error
        try:
            self._handler.on_error(error)
        except Exception:
            logger.exception("stream_on_error_raised")
        finally:
            self._finished.set()

    def _cancellation(self) -> StreamCancelledError:
        return StreamCancelledError(
            "Stream cancelled by caller",
            details={"chunks_delivered": self._chunks_delivered},
        )


# ---------------------------------------------------------------------------
# Helper: Collect full stream into text
# ---------------------------------------------------------------------------

async def collect_stream(
    stream: AsyncIterator[StreamChunk],
) -> tuple[str, StreamChunk]:
    """
    Consume a full stream and return (full_text, final_chunk).

        text, final = await collect_stream(llm.astream(request))
        print(text, final.usage)
    """
    collected = []
    final_chunk = StreamChunk.final(0)

    async for chunk in stream:
        if chunk.done:
            final_chunk = chunk
        elif chunk.text:
            collected.append(chunk.text)

    return "".join(collected), final_chunk
