from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from yetify.domain.errors import LedgerSubmissionError, LifecycleError, StorageError
from yetify.logging_context import get_logging_context
from yetify.security.redaction import redact_data

# logger name -> (level when the root is at DEBUG, level otherwise, env override)
_TRANSPORT_LOGGERS: dict[str, tuple[int, int, str]] = {
    "httpx": (logging.DEBUG, logging.INFO, "HTTPX_LOG_LEVEL"),
    "httpcore": (logging.DEBUG, logging.WARNING, "HTTPCORE_LOG_LEVEL"),
}


def lifecycle_error_fields(exc: BaseException) -> dict[str, Any]:
    """Structured fields for a lifecycle failure: the step, plus ledger or storage details."""
    if not isinstance(exc, LifecycleError):
        return {}
    fields: dict[str, Any] = {"step": exc.step.value}
    if isinstance(exc, LedgerSubmissionError):
        fields["category"] = exc.category.value
        fields["retryable"] = exc.retryable
        if exc.details:
            fields["details"] = exc.details
    elif isinstance(exc, StorageError):
        fields["operation"] = exc.operation
        fields["target"] = exc.target
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record: event, structured extras, lifecycle context, error fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(get_logging_context())
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["error_type"] = type(exc).__name__
            payload["error_message"] = str(exc)
            for key, value in lifecycle_error_fields(exc).items():
                payload.setdefault(key, value)
            payload["traceback"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["traceback"] = record.exc_text

        return json.dumps(redact_data(payload), default=str)


def _level_from_name(raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    resolved = logging.getLevelName(raw.strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None) -> None:
    """Route the root logger through :class:`JsonFormatter` on stderr.

    ``level`` falls back to ``LOG_LEVEL``; httpx and httpcore follow the root
    level unless ``HTTPX_LOG_LEVEL`` / ``HTTPCORE_LOG_LEVEL`` say otherwise.
    """
    if isinstance(level, int):
        root_level = level
    else:
        root_level = _level_from_name(level or os.getenv("LOG_LEVEL"), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(root_level)

    for name, (debug_level, default_level, env_name) in _TRANSPORT_LOGGERS.items():
        fallback = debug_level if root_level <= logging.DEBUG else default_level
        logging.getLogger(name).setLevel(_level_from_name(os.getenv(env_name), fallback))
