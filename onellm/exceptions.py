"""
Exception hierarchy for OneLLM.

Every failure the client surfaces is one of these types, so callers can
branch on the class instead of parsing provider error bodies:
- Configuration errors (raised at build time or when routing a model)
- Provider errors (translated from backend HTTP status / transport failures)
- Retry exhaustion (the resilience executor gave up)
- Streaming failures (delivered through the handler's on_error)

Each class carries a ``retryable`` flag that the resilience executor uses
to decide whether another attempt is allowed.

Usage:
    from onellm.exceptions import OneLLMError, RetryExhaustedError

    try:
        response = llm.complete(request)
    except RetryExhaustedError as e:
        print(f"gave up after {e.attempts} attempts: {e.last_error}")
    except OneLLMError as e:
        print(f"request failed: {e}")
"""

from __future__ import annotations

from typing import Any, Optional


class OneLLMError(Exception):
    """
    Base exception for all OneLLM errors.

    Catch ``OneLLMError`` to handle any failure raised by the client.
    """

    retryable: bool = False

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(OneLLMError):
    """A caller or configuration defect. Never retried."""


class RoutingConfigurationError(ConfigurationError):
    """
    Raised when a routing rule table is invalid.

    Examples:
    - More than one catch-all rule
    - A catch-all rule that is not the last rule
    - An invalid regular expression in a pattern rule
    """


class ProviderConfigurationError(ConfigurationError):
    """Raised by the builder when a provider lacks credentials or an endpoint."""

    def __init__(
        self,
        message: str,
        *,
        provider: Any = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider


class UnroutableModelError(ConfigurationError):
    """No routing rule (not even a catch-all) matched the model string."""

    def __init__(self, model: str, *, details: Optional[dict] = None):
        super().__init__(f"No routing rule matches model '{model}'", details=details)
        self.model = model


class ProviderNotConfiguredError(ConfigurationError):
    """
    The router resolved a provider whose adapter was never built.

    Example: model "gpt-4" resolves to OpenAI, but the client was built
    with only `.ollama()`.
    """

    def __init__(self, provider: Any, *, details: Optional[dict] = None):
        name = getattr(provider, "value", provider)
        super().__init__(
            f"Provider '{name}' is not configured. "
            f"Enable it on the builder before calling models it serves.",
            details=details,
        )
        self.provider = provider


# ── Provider Errors ───────────────────────────────────────────────


class ProviderError(OneLLMError):
    """
    A backend rejected or failed a request.

    Adapters translate HTTP statuses and transport exceptions into one of
    the subclasses below before the error reaches the dispatch core.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Any = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """Credentials were missing, invalid, or lack permission (401/403)."""


class RateLimitedError(ProviderError):
    """
    The backend asked us to slow down (429).

    ``retry_after`` holds the server's hint in seconds when one was sent.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        provider: Any = None,
        status_code: Optional[int] = 429,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            status_code=status_code,
            details=details,
        )
        self.retry_after = retry_after


class RequestValidationError(ProviderError):
    """The backend rejected the request as malformed (4xx validation)."""


class TransientTransportError(ProviderError):
    """Network failure, timeout, or 5xx-class server error."""

    retryable = True


class StreamFailureError(ProviderError):
    """
    A stream aborted after chunks were already delivered.

    Not retryable: a partially-delivered stream cannot be replayed.
    """


class StreamCancelledError(StreamFailureError):
    """The caller cancelled the stream through its handle."""


# ── Retry / Lifecycle ─────────────────────────────────────────────


class RetryExhaustedError(OneLLMError):
    """
    Raised when every attempt allowed by the retry policy failed with a
    retryable error.

    The last observed failure is available as ``last_error`` and is also
    chained as ``__cause__``.
    """

    def __init__(
        self,
        last_error: BaseException,
        *,
        attempts: int,
        elapsed: float,
        details: Optional[dict] = None,
    ):
        super().__init__(
            f"Gave up after {attempts} attempt(s) in {elapsed:.2f}s: {last_error}",
            details=details,
        )
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed = elapsed


class ClientClosedError(OneLLMError):
    """A call was made on a client after ``close()``."""
