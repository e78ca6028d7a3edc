"""
Tests for HTTP status / transport → OneLLM error translation.
"""

from __future__ import annotations

import httpx
import pytest

from onellm.exceptions import (
    AuthenticationError,
    RateLimitedError,
    RequestValidationError,
    TransientTransportError,
)
from onellm.llm.llm_config import Provider
from onellm.providers.base import (
    error_for_response,
    error_for_status,
    error_for_transport,
    extract_error_message,
    parse_retry_after,
)


class TestErrorForStatus:
    """Status code classification."""

    @pytest.mark.parametrize("status,cls", [
        (400, RequestValidationError),
        (401, AuthenticationError),
        (403, AuthenticationError),
        (404, RequestValidationError),
        (408, TransientTransportError),
        (409, TransientTransportError),
        (422, RequestValidationError),
        (429, RateLimitedError),
        (500, TransientTransportError),
        (502, TransientTransportError),
        (503, TransientTransportError),
        (529, TransientTransportError),
    ])
    def test_classification(self, status, cls):
        error = error_for_status(Provider.OPENAI, status, "boom")
        assert type(error) is cls
        assert error.status_code == status
        assert error.provider is Provider.OPENAI
        assert str(error) == "openai: boom"

    def test_rate_limit_carries_retry_after(self):
        error = error_for_status(Provider.GROQ, 429, "slow", retry_after=4.0)
        assert error.retry_after == 4.0


class TestExtractErrorMessage:
    """Readable messages from assorted error bodies."""

    def test_openai_style_json(self):
        response = httpx.Response(400, json={"error": {"message": "bad model", "type": "invalid"}})
        assert extract_error_message(response) == "bad model"

    def test_ollama_style_json(self):
        response = httpx.Response(404, json={"error": "model 'x' not found"})
        assert extract_error_message(response) == "model 'x' not found"

    def test_html_page_uses_title(self):
        response = httpx.Response(
            502,
            text="<html><head><title>502 Bad Gateway</title></head></html>",
            headers={"content-type": "text/html"},
        )
        assert extract_error_message(response) == "502 Bad Gateway"

    def test_plain_text(self):
        assert extract_error_message(httpx.Response(500, text="oops")) == "oops"

    def test_empty_body(self):
        assert extract_error_message(httpx.Response(503)) == "HTTP 503"


class TestRetryAfter:
    """Retry-After header parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("3", 3.0),
        ("0.5", 0.5),
        (None, None),
        ("", None),
        ("Wed, 21 Oct 2015 07:28:00 GMT", None),
        ("-1", None),
    ])
    def test_parse(self, value, expected):
        assert parse_retry_after(value) == expected

    def test_error_for_response_reads_header(self):
        response = httpx.Response(429, json={"error": "busy"}, headers={"retry-after": "2"})
        error = error_for_response(Provider.OPENROUTER, response)
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 2.0


class TestTransportErrors:
    """httpx exceptions become transient errors."""

    def test_timeout(self):
        error = error_for_transport(Provider.OLLAMA, httpx.ReadTimeout("slow"))
        assert isinstance(error, TransientTransportError)
        assert "timed out" in str(error)

    def test_connect_error(self):
        error = error_for_transport(Provider.OLLAMA, httpx.ConnectError("refused"))
        assert "transport failure" in str(error)
        assert error.retryable
