"""
Tests for the structured logging configuration.

Validates:
- JSONFormatter produces valid JSON with required fields
- DevFormatter produces human-readable colored text
- ContextFilter injects call_id from the current context
- configure_logging() switches mode based on ONELLM_ENV
"""

from __future__ import annotations

import json
import logging
import os
import sys
from io import StringIO
from unittest.mock import patch

import pytest

from onellm.observability.logging_config import (
    ContextFilter,
    DevFormatter,
    JSONFormatter,
    clear_call_id,
    record_fields,
    configure_logging,
    get_call_id,
    reset_call_id,
    set_call_id,
)


# ─── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _cleanup_call_id():
    """Clear call_id before and after each test."""
    clear_call_id()
    yield
    clear_call_id()


@pytest.fixture
def restore_root_logger():
    """configure_logging() replaces root handlers; put the originals back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for h in root.handlers[:]:
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def _make_record(msg="test message", level=logging.INFO, name="test.logger", extra=None):
    return logging.makeLogRecord({
        "name": name,
        "levelno": level,
        "levelname": logging.getLevelName(level),
        "msg": msg,
        **(extra or {}),
    })


# ─── JSONFormatter Tests ──────────────────────────────────────────────


class TestJSONFormatter:
    """Tests for the production JSON log formatter."""

    def test_includes_required_fields(self):
        record = _make_record("test", level=logging.WARNING, name="onellm.llm.dispatch")
        parsed = json.loads(JSONFormatter().format(record))

        assert "T" in parsed["timestamp"]
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "onellm.llm.dispatch"
        assert parsed["message"] == "test"

    def test_includes_extra_fields(self):
        record = _make_record(
            "llm_call_completed",
            extra={"provider": "ollama", "model": "mistral", "attempts": 2},
        )
        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["provider"] == "ollama"
        assert parsed["model"] == "mistral"
        assert parsed["attempts"] == 2

    def test_handles_exception_info(self):
        try:
            raise ValueError("test error")
        except ValueError:
            record = _make_record("error occurred")
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))
        assert "ValueError" in parsed["exception"]

    def test_non_serializable_extra_becomes_string(self):
        record = _make_record("test", extra={"complex_obj": object()})
        parsed = json.loads(JSONFormatter().format(record))
        assert isinstance(parsed["complex_obj"], str)

    def test_record_fields_excludes_builtin_attributes(self):
        record = _make_record("x", extra={"provider": "xai", "attempts": 1})
        assert record_fields(record) == {"provider": "xai", "attempts": 1}


# ─── DevFormatter Tests ───────────────────────────────────────────────


class TestDevFormatter:
    """Tests for the local development colored formatter."""

    def test_includes_message_level_and_logger(self):
        record = _make_record("hello dev", level=logging.WARNING, name="onellm.client")
        output = DevFormatter().format(record)
        assert "hello dev" in output
        assert "WARNING" in output
        assert "onellm.client" in output

    def test_includes_known_extras_inline(self):
        record = _make_record(
            "llm_retry_scheduled",
            extra={"call_id": "abc123", "provider": "groq", "attempt": 2, "delay_s": 0.5},
        )
        output = DevFormatter().format(record)
        assert "call_id=abc123" in output
        assert "provider=groq" in output
        assert "attempt=2" in output
        assert "delay_s=0.5" in output

    def test_skips_empty_extras(self):
        record = _make_record("x", extra={"provider": ""})
        assert "provider=" not in DevFormatter().format(record)

    def test_color_codes_present_for_error(self):
        record = _make_record("error!", level=logging.ERROR)
        assert "\033[31m" in DevFormatter().format(record)


# ─── ContextFilter / call_id ──────────────────────────────────────────


class TestCallContext:
    """Tests for call_id propagation."""

    def test_injects_call_id_when_set(self):
        set_call_id("call-123")
        record = _make_record("test")
        assert ContextFilter().filter(record) is True
        assert record.call_id == "call-123"  # type: ignore[attr-defined]

    def test_no_call_id_when_not_set(self):
        record = _make_record("test")
        ContextFilter().filter(record)
        assert not hasattr(record, "call_id")

    def test_explicit_call_id_wins(self):
        set_call_id("ambient")
        record = _make_record("test", extra={"call_id": "explicit"})
        ContextFilter().filter(record)
        assert record.call_id == "explicit"  # type: ignore[attr-defined]

    def test_reset_restores_previous(self):
        outer = set_call_id("outer")
        inner = set_call_id("inner")
        assert get_call_id() == "inner"
        reset_call_id(inner)
        assert get_call_id() == "outer"
        reset_call_id(outer)
        assert get_call_id() is None


# ─── configure_logging Tests ──────────────────────────────────────────


class TestConfigureLogging:
    """Tests for the configure_logging() entry point."""

    def test_production_uses_json_formatter(self, restore_root_logger):
        configure_logging(env="production")
        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)

    def test_development_uses_dev_formatter(self, restore_root_logger):
        configure_logging(env="development")
        assert isinstance(restore_root_logger.handlers[0].formatter, DevFormatter)

    def test_reads_env_var(self, restore_root_logger):
        with patch.dict(os.environ, {"ONELLM_ENV": "production"}):
            configure_logging()
        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)

    def test_removes_existing_handlers(self, restore_root_logger):
        restore_root_logger.addHandler(logging.StreamHandler())
        configure_logging(env="development")
        assert len(restore_root_logger.handlers) == 1
        assert any(isinstance(f, ContextFilter) for f in restore_root_logger.handlers[0].filters)

    def test_silences_http_libraries(self, restore_root_logger):
        configure_logging(env="development", level=logging.DEBUG)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING

    def test_json_output_end_to_end(self, restore_root_logger):
        configure_logging(env="production")
        stream = StringIO()
        restore_root_logger.handlers[0].stream = stream

        token = set_call_id("e2e-call")
        try:
            logging.getLogger("test.e2e").info(
                "llm_call_completed",
                extra={"provider": "openai", "latency_ms": 12.5},
            )
        finally:
            reset_call_id(token)

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["message"] == "llm_call_completed"
        assert parsed["provider"] == "openai"
        assert parsed["call_id"] == "e2e-call"
