"""
Pydantic schema for a OneLLM settings file.

A settings file enables providers and tunes resilience without code
changes:

    providers:
      ollama:
        base_url: http://localhost:11434
      openai:
        api_key: ${OPENAI_API_KEY}
    retry:
      max_attempts: 4
      attempt_timeout: 30
    max_concurrency: 8
    routing:
      - {kind: prefix, value: "local/", provider: ollama, strip_prefix: true}
      - {kind: catch_all, provider: openrouter}

Omitting ``routing`` keeps the default routing table.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from onellm.llm.llm_config import (
    DEFAULT_RETRY_POLICY,
    MatchKind,
    Provider,
    ProviderSettings,
    RetryPolicy,
    RoutingRule,
)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class ProviderSettingsModel(BaseModel):
    """Credentials and endpoint for one provider."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = Field(default=120.0, gt=0)
    api_version: Optional[str] = None
    extra_headers: dict[str, str] = Field(default_factory=dict)

    def to_settings(self, provider: Provider) -> ProviderSettings:
        return ProviderSettings(
            provider=provider,
            api_key=self.api_key or None,
            base_url=self.base_url or None,
            timeout=self.timeout,
            extra_headers=dict(self.extra_headers),
            api_version=self.api_version,
        )


class RetrySettingsModel(BaseModel):
    """Retry / timeout knobs. Defaults match ``DEFAULT_RETRY_POLICY``."""
    max_attempts: int = Field(default=DEFAULT_RETRY_POLICY.max_attempts, ge=1)
    base_backoff: float = Field(default=DEFAULT_RETRY_POLICY.base_backoff, ge=0)
    multiplier: float = Field(default=DEFAULT_RETRY_POLICY.multiplier, ge=1)
    max_backoff: float = Field(default=DEFAULT_RETRY_POLICY.max_backoff, ge=0)
    attempt_timeout: Optional[float] = Field(
        default=DEFAULT_RETRY_POLICY.attempt_timeout, gt=0
    )
    jitter: float = Field(default=DEFAULT_RETRY_POLICY.jitter, ge=0, le=1)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_backoff=self.base_backoff,
            multiplier=self.multiplier,
            max_backoff=self.max_backoff,
            attempt_timeout=self.attempt_timeout,
            jitter=self.jitter,
        )


class RoutingRuleModel(BaseModel):
    """One routing rule. ``value`` is unused for catch-all rules."""
    kind: MatchKind
    provider: Provider
    value: str = ""
    strip_prefix: bool = False

    @field_validator("provider", mode="before")
    @classmethod
    def parse_provider(cls, v):
        if isinstance(v, str):
            return Provider.parse(v)
        return v

    @model_validator(mode="after")
    def value_required(self) -> RoutingRuleModel:
        if self.kind is not MatchKind.CATCH_ALL and not self.value:
            raise ValueError(f"{self.kind.value} rule needs a non-empty value")
        if self.strip_prefix and self.kind is not MatchKind.PREFIX:
            raise ValueError("strip_prefix only applies to prefix rules")
        return self

    def to_rule(self) -> RoutingRule:
        return RoutingRule(
            kind=self.kind,
            provider=self.provider,
            value=self.value,
            strip_prefix=self.strip_prefix,
        )


# ---------------------------------------------------------------------------
# Root Config Model
# ---------------------------------------------------------------------------

class OneLLMSettings(BaseModel):
    """Complete client configuration, typically loaded from YAML."""
    providers: dict[Provider, ProviderSettingsModel] = Field(default_factory=dict)
    retry: RetrySettingsModel = Field(default_factory=RetrySettingsModel)
    max_concurrency: int = Field(default=16, ge=1)
    routing: Optional[list[RoutingRuleModel]] = None

    @field_validator("providers", mode="before")
    @classmethod
    def parse_provider_keys(cls, v):
        if isinstance(v, dict):
            return {
                Provider.parse(k) if isinstance(k, str) else k: (val or {})
                for k, val in v.items()
            }
        return v

    def provider_settings(self) -> list[ProviderSettings]:
        return [model.to_settings(p) for p, model in self.providers.items()]

    def routing_rules(self) -> Optional[list[RoutingRule]]:
        if self.routing is None:
            return None
        return [rule.to_rule() for rule in self.routing]
