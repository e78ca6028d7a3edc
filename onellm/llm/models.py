"""
Normalized request / response types shared by every provider.

Adapters consume an ``LLMRequest`` and produce ``LLMResponse`` or a
sequence of ``StreamChunk`` values; nothing provider-specific leaks past
them except the opaque ``raw`` payload.

Usage:
    from onellm.llm.models import LLMRequest

    request = (
        LLMRequest.builder()
        .model("local/gemma3:270m")
        .system("You are terse.")
        .user("write a code in python to add two numbers.")
        .temperature(0.2)
        .build()
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from onellm.llm.llm_config import Provider


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMRequest:
    """A single completion request. Immutable once built."""

    model: str
    user: str
    system: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.model or not self.model.strip():
            raise ValueError("model is required")
        if not self.user or not self.user.strip():
            raise ValueError("user message is required")
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be within [0, 2]")
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if self.top_p is not None and not 0.0 <= self.top_p <= 1.0:
            raise ValueError("top_p must be within [0, 1]")
        if isinstance(self.stop, str):
            object.__setattr__(self, "stop", (self.stop,))
        else:
            object.__setattr__(self, "stop", tuple(self.stop))

    @staticmethod
    def builder() -> LLMRequestBuilder:
        return LLMRequestBuilder()

    def with_model(self, model: str) -> LLMRequest:
        """Copy of this request addressed to a different model name."""
        return replace(self, model=model)

    def messages(self) -> list[dict[str, str]]:
        """OpenAI-style message list (system first when present)."""
        messages = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        messages.append({"role": "user", "content": self.user})
        return messages


class LLMRequestBuilder:
    """Fluent assembler for ``LLMRequest``."""

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}

    def model(self, model: str) -> LLMRequestBuilder:
        self._fields["model"] = model
        return self

    def system(self, content: str) -> LLMRequestBuilder:
        self._fields["system"] = content
        return self

    def user(self, content: str) -> LLMRequestBuilder:
        self._fields["user"] = content
        return self

    def temperature(self, value: float) -> LLMRequestBuilder:
        self._fields["temperature"] = value
        return self

    def max_tokens(self, value: int) -> LLMRequestBuilder:
        self._fields["max_tokens"] = value
        return self

    def top_p(self, value: float) -> LLMRequestBuilder:
        self._fields["top_p"] = value
        return self

    def stop(self, *sequences: str) -> LLMRequestBuilder:
        self._fields["stop"] = tuple(sequences)
        return self

    def build(self) -> LLMRequest:
        return LLMRequest(
            model=self._fields.get("model", ""),
            user=self._fields.get("user", ""),
            system=self._fields.get("system"),
            temperature=self._fields.get("temperature"),
            max_tokens=self._fields.get("max_tokens"),
            top_p=self._fields.get("top_p"),
            stop=self._fields.get("stop", ()),
        )


# ---------------------------------------------------------------------------
# Response Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenUsage:
    """Token counters. Zero when the provider does not report them."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMResponse:
    """Unified response from any LLM provider."""

    content: str
    provider: Provider
    model: str                 # Model name as sent to the backend
    latency_ms: float = 0.0
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None
    attempts: int = 1          # Outbound calls made for this response
    raw: Any = field(default=None, repr=False, compare=False)

    @property
    def total_tokens(self) -> int:
        return self.usage.total_tokens

    def with_dispatch_info(self, *, latency_ms: float, attempts: int) -> LLMResponse:
        return replace(self, latency_ms=latency_ms, attempts=attempts)


@dataclass(frozen=True)
class StreamChunk:
    """
    One incremental text fragment from a stream.

    The last chunk of every stream has ``done=True``; usage and
    finish_reason are only populated there.
    """

    text: str
    index: int = 0
    done: bool = False
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None

    @classmethod
    def final(
        cls,
        index: int,
        usage: Optional[TokenUsage] = None,
        finish_reason: Optional[str] = None,
    ) -> StreamChunk:
        return cls(
            text="",
            index=index,
            done=True,
            usage=usage or TokenUsage(),
            finish_reason=finish_reason,
        )
