"""
Provider Registry — immutable snapshot of configured adapters.

Built once by the client builder and never mutated afterwards, so any
number of callers can read it concurrently without locking.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

from onellm.exceptions import ProviderNotConfiguredError
from onellm.llm.llm_config import Provider

if TYPE_CHECKING:
    from onellm.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Read-only ``Provider → ProviderAdapter`` lookup."""

    def __init__(self, adapters: Mapping[Provider, "ProviderAdapter"]):
        for provider, adapter in adapters.items():
            if adapter.provider is not provider:
                raise ValueError(
                    f"Adapter for '{adapter.provider.value}' registered "
                    f"under '{provider.value}'"
                )
        self._adapters = MappingProxyType(dict(adapters))

    def get(self, provider: Provider) -> "ProviderAdapter":
        try:
            return self._adapters[provider]
        except KeyError:
            raise ProviderNotConfiguredError(provider) from None

    def list_providers(self) -> frozenset[Provider]:
        return frozenset(self._adapters)

    def __contains__(self, provider: object) -> bool:
        return provider in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        """Close every adapter. Errors are logged so the rest still close."""
        for provider, adapter in self._adapters.items():
            try:
                await adapter.aclose()
            except Exception as e:
                logger.warning(
                    "adapter_close_failed",
                    extra={"provider": provider.value, "error": str(e)[:200]},
                )
