"""
Resilience Executor — per-attempt timeout plus retry with exponential backoff.

Wraps one adapter round trip. Failures are classified through the
``retryable`` flag on the OneLLM exception hierarchy:

- Retryable: RateLimitedError, TransientTransportError (including the
  per-attempt timeout). Retried until the policy's attempts run out,
  then escalated to RetryExhaustedError.
- Terminal: everything else. Propagated on the first occurrence.

Retrying means a single logical request can reach the backend more than
once. Completion calls are not idempotent on the provider side (each
attempt may be billed), so keep ``max_attempts`` small for expensive
models.

Usage:
    executor = ResilienceExecutor(RetryPolicy(max_attempts=4))
    response = await executor.execute(lambda: adapter.invoke(request),
                                      provider=adapter.provider, model="gpt-4o")
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from onellm.exceptions import (
    OneLLMError,
    RateLimitedError,
    RetryExhaustedError,
    TransientTransportError,
)
from onellm.llm.llm_config import DEFAULT_RETRY_POLICY, Provider, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """True for failures the executor may re-attempt."""
    return isinstance(error, OneLLMError) and error.retryable


@dataclass
class RetryState:
    """Ephemeral per-call counters. Discarded when the call resolves."""

    started_at: float
    attempt: int = 0
    elapsed: float = 0.0
    last_error: Optional[BaseException] = None


RetryListener = Callable[[RetryState, float], None]


class ResilienceExecutor:
    """
    Executes a zero-argument coroutine factory under a RetryPolicy.

    The factory is called once per attempt so every attempt gets a fresh
    coroutine. Stateless between calls; safe to share across tasks.
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self._policy = policy
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        provider: Optional[Provider] = None,
        model: str = "",
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[RetryListener] = None,
    ) -> T:
        """
        Run ``call`` until it succeeds, fails terminally, or the attempt
        budget is spent.

        Raises:
            RetryExhaustedError: every attempt failed with a retryable error
            OneLLMError / Exception: the first terminal failure, unchanged
            asyncio.CancelledError: never retried
        """
        policy = policy or self._policy
        state = RetryState(started_at=self._clock())
        provider_name = provider.value if provider is not None else ""

        while True:
            state.attempt += 1
            try:
                return await self._attempt(call, policy, provider, state)
            except Exception as error:
                state.elapsed = self._clock() - state.started_at
                state.last_error = error

                if not is_retryable(error):
                    logger.info(
                        "llm_call_terminal_failure",
                        extra={
                            "provider": provider_name,
                            "model": model,
                            "attempt": state.attempt,
                            "error_type": type(error).__name__,
                            "error": str(error)[:200],
                        },
                    )
                    raise

                if state.attempt >= policy.max_attempts:
                    logger.error(
                        "llm_retry_exhausted",
                        extra={
                            "provider": provider_name,
                            "model": model,
                            "attempts": state.attempt,
                            "elapsed_s": round(state.elapsed, 3),
                            "error": str(error)[:200],
                        },
                    )
                    raise RetryExhaustedError(
                        error,
                        attempts=state.attempt,
                        elapsed=state.elapsed,
                        details={"provider": provider_name, "model": model},
                    ) from error

                delay = self.compute_delay(policy, state.attempt, error)
                logger.warning(
                    "llm_retry_scheduled",
                    extra={
                        "provider": provider_name,
                        "model": model,
                        "attempt": state.attempt,
                        "max_attempts": policy.max_attempts,
                        "delay_s": round(delay, 3),
                        "error_type": type(error).__name__,
                        "error": str(error)[:200],
                    },
                )
                if on_retry is not None:
                    on_retry(state, delay)

            await self._sleep(delay)

    async def _attempt(
        self,
        call: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        provider: Optional[Provider],
        state: RetryState,
    ) -> T:
        if policy.attempt_timeout is None:
            return await call()
        try:
            return await asyncio.wait_for(call(), timeout=policy.attempt_timeout)
        except asyncio.TimeoutError as e:
            raise TransientTransportError(
                f"Attempt {state.attempt} timed out after {policy.attempt_timeout}s",
                provider=provider,
            ) from e

    def compute_delay(
        self,
        policy: RetryPolicy,
        attempt: int,
        error: Optional[BaseException] = None,
    ) -> float:
        """Jittered backoff after ``attempt`` failed, within [0, max_backoff]."""
        delay = policy.backoff_for(attempt)
        if policy.jitter:
            delay *= self._rng.uniform(1 - policy.jitter, 1 + policy.jitter)
        if isinstance(error, RateLimitedError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return max(0.0, min(delay, policy.max_backoff))
