"""
Shared httpx plumbing for adapters that speak raw HTTP (Ollama, Gemini).

Owns one lazily-created ``httpx.AsyncClient`` per adapter and turns
error statuses and transport exceptions into the OneLLM taxonomy before
anything reaches the dispatch core.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from onellm.exceptions import ProviderConfigurationError, TransientTransportError
from onellm.llm.llm_config import ProviderSettings
from onellm.providers.base import (
    ProviderAdapter,
    error_for_response,
    error_for_transport,
)

logger = logging.getLogger(__name__)


class HTTPProviderAdapter(ProviderAdapter):
    """Base for adapters built directly on httpx."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings)
        if not settings.endpoint:
            raise ProviderConfigurationError(
                f"No endpoint configured for '{self.provider.value}'",
                provider=self.provider,
            )
        self.base_url = settings.endpoint.rstrip("/")
        self._client = http_client
        # Injected clients belong to the caller and are never closed here.
        self._owns_client = http_client is None

    @property
    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", **self.settings.extra_headers}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=httpx.Timeout(self.settings.timeout),
                limits=httpx.Limits(
                    max_connections=100,
                    max_keepalive_connections=20,
                    keepalive_expiry=120.0,
                ),
            )
            self._owns_client = True
        return self._client

    async def _post_json(
        self,
        path: str,
        payload: dict[str, Any],
        params: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.post(
                self._url(path), json=payload, params=params, headers=self.headers
            )
        except httpx.TransportError as e:
            raise error_for_transport(self.provider, e) from e

        if response.status_code >= 400:
            raise error_for_response(self.provider, response)
        try:
            return response.json()
        except ValueError as e:
            raise TransientTransportError(
                f"{self.provider.value}: invalid JSON in response: {e}",
                provider=self.provider,
                status_code=response.status_code,
            ) from e

    async def _post_lines(
        self,
        path: str,
        payload: dict[str, Any],
        params: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[str]:
        """Streaming POST yielding non-empty response lines."""
        client = self._get_client()
        try:
            async with client.stream(
                "POST", self._url(path), json=payload, params=params, headers=self.headers
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise error_for_response(self.provider, response)
                async for line in response.aiter_lines():
                    if line.strip():
                        yield line
        except httpx.TransportError as e:
            raise error_for_transport(self.provider, e) from e

    def _url(self, path: str) -> str:
        # Injected clients may not carry our base_url.
        return f"{self.base_url}{path}"

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._owns_client = True
