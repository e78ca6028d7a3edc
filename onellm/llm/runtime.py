"""
Background runtime — a private asyncio loop on a daemon thread.

The public client is synchronous-first: blocking calls, futures and
callback streams all submit coroutines to this loop and never run a loop
in the caller's thread. Closing the runtime cancels whatever is still
in flight, runs an async cleanup hook (adapter shutdown), stops the loop
and joins the thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from onellm.exceptions import ClientClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SHUTDOWN_TIMEOUT = 10.0


class BackgroundRuntime:
    """Owns one event loop and the thread that runs it."""

    def __init__(self, name: str = "onellm-runtime"):
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()
        self._closed = False
        self._started = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        self._started.wait()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def in_runtime_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future:
        """Schedule ``coro`` on the runtime loop. Thread-safe."""
        with self._lock:
            if self._closed:
                coro.close()
                raise ClientClosedError("Client is closed")
            return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def shutdown(
        self,
        cleanup: Optional[Callable[[], Awaitable[None]]] = None,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> bool:
        """
        Cancel in-flight tasks, run ``cleanup`` and stop the loop.

        Idempotent: only the first call does anything and returns True.
        Called from the runtime thread itself (e.g. inside a stream
        callback) the drain is scheduled and the thread is not joined.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True

        if self.in_runtime_thread():
            self._loop.create_task(self._drain(cleanup))
            return True

        drained = asyncio.run_coroutine_threadsafe(self._drain(cleanup), self._loop)
        try:
            drained.result(timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("runtime_shutdown_timeout", extra={"timeout_s": timeout})
            self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        return True

    async def _drain(self, cleanup: Optional[Callable[[], Awaitable[None]]]) -> None:
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info("runtime_cancelling_tasks", extra={"count": len(pending)})
            await asyncio.gather(*pending, return_exceptions=True)
        try:
            if cleanup is not None:
                await cleanup()
        finally:
            self._loop.call_soon(self._loop.stop)

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._started.set)
        try:
            self._loop.run_forever()
        finally:
            try:
                self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            finally:
                self._loop.close()
                logger.debug("runtime_stopped")
