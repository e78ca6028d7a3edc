"""
Logging setup for OneLLM.

Library code never configures logging. Modules log through
``logging.getLogger(__name__)`` using snake_case event names as the
message and structured fields in ``extra``:

    logger.info("llm_call_completed", extra={
        "provider": "ollama",
        "model": "gemma3:270m",
        "latency_ms": 812.4,
    })

Applications (and the CLI in main.py) call ``configure_logging()`` once.
ONELLM_ENV=production selects one JSON object per line on stdout; any
other value selects coloured text on stderr.

Every record emitted while a dispatch is running carries that call's
``call_id``, so the retries and provider logs of one logical request
can be grouped.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# One dispatch = one asyncio task; tasks copy the context they start in.
_current_call: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "onellm_call_id", default=None
)


def set_call_id(call_id: Optional[str]) -> contextvars.Token:
    """Bind ``call_id`` to the running context. Undo with ``reset_call_id``."""
    return _current_call.set(call_id)


def reset_call_id(token: contextvars.Token) -> None:
    _current_call.reset(token)


def get_call_id() -> Optional[str]:
    return _current_call.get()


def clear_call_id() -> None:
    _current_call.set(None)


class ContextFilter(logging.Filter):
    """Stamps the bound call_id on records that don't set one explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "call_id"):
            call_id = _current_call.get()
            if call_id:
                record.call_id = call_id  # type: ignore[attr-defined]
        return True


# Attributes every LogRecord has; anything else arrived through ``extra``.
_BUILTIN_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The ``extra`` fields attached to ``record``, in insertion order."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _BUILTIN_ATTRS and not key.startswith("_")
    }


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": "2025-01-01T12:00:00+00:00", "level": "INFO",
         "logger": "onellm.llm.dispatch", "message": "llm_call_completed",
         "call_id": "3f9c0a1b2d4e", "provider": "openai", "attempts": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, _jsonable(value)) for key, value in record_fields(record).items()
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class DevFormatter(logging.Formatter):
    """
    Terminal-friendly output:

        12:00:01 WARNING  onellm.llm.resilience: llm_retry_scheduled [call_id=... attempt=1 delay_s=0.5]
    """

    _RESET = "\033[0m"
    _LEVEL_STYLE = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    # Shown inline, in this order, when present.
    INLINE_FIELDS = (
        "call_id", "provider", "model", "state", "attempt",
        "delay_s", "latency_ms", "chunks", "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        style = self._LEVEL_STYLE.get(record.levelno, self._RESET)
        fields = " ".join(
            f"{name}={getattr(record, name)}"
            for name in self.INLINE_FIELDS
            if getattr(record, name, None) not in (None, "")
        )
        line = "{time} {style}{level:<8}{reset} {name}: {message}{fields}".format(
            time=self.formatTime(record, "%H:%M:%S"),
            style=style,
            level=record.levelname,
            reset=self._RESET,
            name=record.name,
            message=record.getMessage(),
            fields=f" [{fields}]" if fields else "",
        )
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# Third-party loggers that are chatty at INFO/DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def _handler_for(env: str) -> logging.Handler:
    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())
    handler.addFilter(ContextFilter())
    return handler


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Replace the root logger's handlers with one OneLLM handler.

    Args:
        env: "production" for JSON, anything else for coloured text.
             Defaults to ONELLM_ENV, then "development".
        level: Root log level.
    """
    if env is None:
        env = os.environ.get("ONELLM_ENV", "development")
    env = env.strip().lower()

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_handler_for(env))
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
