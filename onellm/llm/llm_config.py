"""
LLM Configuration — provider identities, routing rules, and retry policy.

Defines the fixed set of supported backends, the default model-string
routing table, and the retry policy used by the resilience executor.

Usage:
    from onellm.llm.llm_config import Provider, DEFAULT_ROUTING_RULES, RetryPolicy

    policy = RetryPolicy(max_attempts=5, base_backoff=0.25)
    rules = [RoutingRule.prefix("mine/", Provider.OLLAMA), *DEFAULT_ROUTING_RULES]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from onellm.exceptions import RoutingConfigurationError


# ---------------------------------------------------------------------------
# Provider Identity
# ---------------------------------------------------------------------------

class Provider(str, Enum):
    """Supported LLM backends. One adapter per member at most."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    AZURE = "azure"
    GROQ = "groq"
    CEREBRAS = "cerebras"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    XAI = "xai"
    COPILOT = "copilot"

    @classmethod
    def parse(cls, value: str | Provider) -> Provider:
        """Accept an enum member or its name/value in any case."""
        if isinstance(value, Provider):
            return value
        normalized = value.strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unknown provider: {value}. "
                f"Supported: {[p.value for p in cls]}"
            ) from None


# Default endpoints per provider. Azure is deployment-specific and has none.
DEFAULT_BASE_URLS: dict[Provider, str] = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com",
    Provider.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
    Provider.GROQ: "https://api.groq.com/openai/v1",
    Provider.CEREBRAS: "https://api.cerebras.ai/v1",
    Provider.OLLAMA: "http://localhost:11434",
    Provider.OPENROUTER: "https://openrouter.ai/api/v1",
    Provider.XAI: "https://api.x.ai/v1",
    Provider.COPILOT: "https://api.githubcopilot.com",
}

DEFAULT_AZURE_API_VERSION = "2024-10-21"


# ---------------------------------------------------------------------------
# Provider Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and endpoint for one provider, as handed to its adapter."""

    provider: Provider
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 120.0
    extra_headers: dict[str, str] = field(default_factory=dict)
    api_version: Optional[str] = None  # Azure only

    @property
    def endpoint(self) -> Optional[str]:
        """Configured base URL, or the provider default."""
        return self.base_url or DEFAULT_BASE_URLS.get(self.provider)


# ---------------------------------------------------------------------------
# Routing Rules
# ---------------------------------------------------------------------------

class MatchKind(str, Enum):
    PREFIX = "prefix"
    EXACT = "exact"
    PATTERN = "pattern"
    CATCH_ALL = "catch_all"


@dataclass(frozen=True)
class RoutingRule:
    """
    Match predicate over a model string → provider it selects.

    Matching is case-sensitive. With ``strip_prefix`` set, a PREFIX rule
    removes its prefix before the model name reaches the backend
    ("local/mistral" → "mistral").
    """

    kind: MatchKind
    provider: Provider
    value: str = ""
    strip_prefix: bool = False
    _compiled: Optional[re.Pattern] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.kind is MatchKind.CATCH_ALL:
            return
        if not self.value:
            raise ValueError(f"{self.kind.value} rule needs a non-empty value")
        if self.kind is MatchKind.PATTERN:
            try:
                compiled = re.compile(self.value)
            except re.error as e:
                raise RoutingConfigurationError(
                    f"Invalid routing pattern {self.value!r}: {e}"
                ) from e
            object.__setattr__(self, "_compiled", compiled)

    @classmethod
    def prefix(cls, value: str, provider: Provider, *, strip: bool = False) -> RoutingRule:
        return cls(MatchKind.PREFIX, provider, value, strip_prefix=strip)

    @classmethod
    def exact(cls, value: str, provider: Provider) -> RoutingRule:
        return cls(MatchKind.EXACT, provider, value)

    @classmethod
    def pattern(cls, value: str, provider: Provider) -> RoutingRule:
        return cls(MatchKind.PATTERN, provider, value)

    @classmethod
    def catch_all(cls, provider: Provider) -> RoutingRule:
        return cls(MatchKind.CATCH_ALL, provider)

    @property
    def is_catch_all(self) -> bool:
        return self.kind is MatchKind.CATCH_ALL

    def matches(self, model: str) -> bool:
        if self.kind is MatchKind.PREFIX:
            return model.startswith(self.value)
        if self.kind is MatchKind.EXACT:
            return model == self.value
        if self.kind is MatchKind.PATTERN:
            return self._compiled.search(model) is not None
        return True

    def native_model(self, model: str) -> str:
        """The model name to send to the backend."""
        if self.strip_prefix and self.kind is MatchKind.PREFIX:
            return model[len(self.value):]
        return model

    @property
    def display(self) -> str:
        if self.is_catch_all:
            return f"* → {self.provider.value}"
        return f"{self.kind.value}:{self.value} → {self.provider.value}"


# ---------------------------------------------------------------------------
# Default Routing Table
# ---------------------------------------------------------------------------

# Priority order: namespaced prefixes, vendor model families, then the
# OpenRouter catch-all for anything else (typically "org/model" strings).
DEFAULT_ROUTING_RULES: tuple[RoutingRule, ...] = (
    RoutingRule.prefix("local/", Provider.OLLAMA, strip=True),
    RoutingRule.prefix("ollama/", Provider.OLLAMA, strip=True),
    RoutingRule.prefix("azure/", Provider.AZURE, strip=True),
    RoutingRule.prefix("groq/", Provider.GROQ, strip=True),
    RoutingRule.prefix("cerebras/", Provider.CEREBRAS, strip=True),
    RoutingRule.prefix("copilot/", Provider.COPILOT, strip=True),
    RoutingRule.prefix("openrouter/", Provider.OPENROUTER, strip=True),
    RoutingRule.prefix("xai/", Provider.XAI, strip=True),
    RoutingRule.prefix("google/", Provider.GOOGLE, strip=True),
    RoutingRule.prefix("gpt-", Provider.OPENAI),
    RoutingRule.pattern(r"^o[1-9](-|$)", Provider.OPENAI),
    RoutingRule.prefix("chatgpt-", Provider.OPENAI),
    RoutingRule.prefix("claude-", Provider.ANTHROPIC),
    RoutingRule.prefix("gemini-", Provider.GOOGLE),
    RoutingRule.prefix("grok-", Provider.XAI),
    RoutingRule.catch_all(Provider.OPENROUTER),
)


# ---------------------------------------------------------------------------
# Retry Policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry / timeout policy for one logical request.

    Backoff before attempt n+1 is ``min(base_backoff * multiplier**(n-1),
    max_backoff)`` scaled by a random factor in ``[1 - jitter, 1 + jitter]``
    and clamped to ``[0, max_backoff]``.
    """

    max_attempts: int = 3
    base_backoff: float = 0.5
    multiplier: float = 2.0
    max_backoff: float = 8.0
    attempt_timeout: Optional[float] = 60.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff durations must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be > 0 or None")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be within [0, 1]")

    def backoff_for(self, attempt: int) -> float:
        """Un-jittered delay after the given (1-based) failed attempt."""
        return min(self.base_backoff * self.multiplier ** (attempt - 1), self.max_backoff)

    @classmethod
    def no_retry(cls, attempt_timeout: Optional[float] = 60.0) -> RetryPolicy:
        return cls(max_attempts=1, attempt_timeout=attempt_timeout)


DEFAULT_RETRY_POLICY = RetryPolicy()
