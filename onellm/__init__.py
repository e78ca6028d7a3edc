"""
OneLLM — one client for many LLM backends.

Routes a model string ("gpt-4o", "claude-sonnet-4-5", "local/mistral",
"meta-llama/llama-3-70b") to the provider that serves it, and runs the
call with timeouts, retries and typed errors in blocking, future,
async or streaming form.
"""

from onellm.client import OneLLM, OneLLMBuilder
from onellm.exceptions import (
    AuthenticationError,
    ClientClosedError,
    ConfigurationError,
    OneLLMError,
    ProviderConfigurationError,
    ProviderError,
    ProviderNotConfiguredError,
    RateLimitedError,
    RequestValidationError,
    RetryExhaustedError,
    RoutingConfigurationError,
    StreamCancelledError,
    StreamFailureError,
    TransientTransportError,
    UnroutableModelError,
)
from onellm.llm.llm_config import DEFAULT_ROUTING_RULES, Provider, RetryPolicy, RoutingRule
from onellm.llm.models import LLMRequest, LLMResponse, StreamChunk, TokenUsage
from onellm.llm.streaming import CallbackStreamHandler, StreamHandle, StreamHandler

__version__ = "0.1.0"

__all__ = [
    "OneLLM",
    "OneLLMBuilder",
    "LLMRequest",
    "LLMResponse",
    "StreamChunk",
    "TokenUsage",
    "Provider",
    "RetryPolicy",
    "RoutingRule",
    "DEFAULT_ROUTING_RULES",
    "StreamHandler",
    "CallbackStreamHandler",
    "StreamHandle",
    "OneLLMError",
    "ConfigurationError",
    "RoutingConfigurationError",
    "ProviderConfigurationError",
    "UnroutableModelError",
    "ProviderNotConfiguredError",
    "ProviderError",
    "AuthenticationError",
    "RateLimitedError",
    "RequestValidationError",
    "TransientTransportError",
    "StreamFailureError",
    "StreamCancelledError",
    "RetryExhaustedError",
    "ClientClosedError",
]
