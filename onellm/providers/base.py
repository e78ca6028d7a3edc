"""
Provider adapter contract and shared error translation.

Every backend is wrapped by one ``ProviderAdapter`` subclass. The
dispatch core only ever sees normalized ``LLMResponse`` / ``StreamChunk``
values and the OneLLM exception taxonomy; translating backend HTTP
statuses and transport exceptions happens here.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import httpx

from onellm.exceptions import (
    AuthenticationError,
    ProviderError,
    RateLimitedError,
    RequestValidationError,
    TransientTransportError,
)
from onellm.llm.llm_config import Provider, ProviderSettings
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """
    Uniform capability over one backend.

    Implementations must be safe for concurrent invocation: no per-call
    state on the instance.
    """

    provider: Provider

    def __init__(self, settings: ProviderSettings):
        if settings.provider is not self.provider:
            raise ValueError(
                f"{type(self).__name__} serves '{self.provider.value}', "
                f"got settings for '{settings.provider.value}'"
            )
        self.settings = settings

    @abstractmethod
    async def invoke(self, request: LLMRequest) -> LLMResponse:
        """One round trip. ``request.model`` is already provider-native."""

    @abstractmethod
    def stream(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Yield content chunks in emission order, then one ``done`` chunk."""

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider.value!r})"


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

def extract_error_message(response: httpx.Response) -> str:
    """
    Pull a readable message out of an error response.

    Handles JSON error bodies, HTML error pages (proxies, gateways), and
    plain text.
    """
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        data = None

    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)

    text = response.text or ""
    content_type = response.headers.get("content-type", "").lower()
    if "text/html" in content_type or text.lstrip().lower().startswith(("<!doctype", "<html")):
        title = re.search(r"<title[^>]*>(.*?)</title>", text, re.IGNORECASE | re.DOTALL)
        if title:
            return title.group(1).strip()
        return f"HTTP {response.status_code}: server returned an HTML error page"
    return text[:500] or f"HTTP {response.status_code}"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header (delta-seconds form only)."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_for_status(
    provider: Provider,
    status_code: int,
    message: str,
    *,
    retry_after: Optional[float] = None,
) -> ProviderError:
    """Map an HTTP status to the shared failure taxonomy."""
    text = f"{provider.value}: {message}"
    if status_code in (401, 403):
        return AuthenticationError(text, provider=provider, status_code=status_code)
    if status_code == 429:
        return RateLimitedError(
            text,
            retry_after=retry_after,
            provider=provider,
            status_code=status_code,
        )
    if status_code in (408, 409) or status_code >= 500:
        return TransientTransportError(text, provider=provider, status_code=status_code)
    return RequestValidationError(text, provider=provider, status_code=status_code)


def error_for_response(provider: Provider, response: httpx.Response) -> ProviderError:
    return error_for_status(
        provider,
        response.status_code,
        extract_error_message(response),
        retry_after=parse_retry_after(response.headers.get("retry-after")),
    )


def error_for_transport(provider: Provider, error: Exception) -> TransientTransportError:
    """Wrap an httpx (or SDK) connection/timeout exception."""
    kind = "timed out" if isinstance(error, httpx.TimeoutException) else "transport failure"
    return TransientTransportError(
        f"{provider.value}: {kind}: {error}",
        provider=provider,
    )
