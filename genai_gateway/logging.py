"""Application logging configuration utilities."""

from __future__ import annotations

import contextvars
import json
import logging
import pathlib
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

from genai_gateway.core.config import LoggingSettings

_LOG_CONFIGURED = False
_REQUEST_ID_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class RequestContextFilter(logging.Filter):
    """Attach the current request ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_") and value is not None
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def set_request_id(request_id: str | None) -> contextvars.Token[str | None]:
    """Bind the current request ID to the logging context."""
    return _REQUEST_ID_CTX.set(request_id)


def reset_request_id(token: contextvars.Token[str | None]) -> None:
    _REQUEST_ID_CTX.reset(token)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def _log_file_path(configured: str) -> pathlib.Path:
    path = pathlib.Path(configured)
    if not path.is_absolute():
        path = BASE_DIR / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Install console and JSON-lines file handlers on the root logger once."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = settings or LoggingSettings()
    console_level = getattr(logging, settings.level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    context_filter = RequestContextFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.addFilter(context_filter)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s (request_id=%(request_id)s)"
        )
    )
    root_logger.addHandler(console_handler)

    if settings.file:
        file_handler = RotatingFileHandler(
            _log_file_path(settings.file),
            maxBytes=10_000_000,
            backupCount=5,
        )
        file_handler.setLevel(logging.INFO)
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    # Per-request noise from the HTTP stack.
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _LOG_CONFIGURED = True


__all__ = [
    "JsonFormatter",
    "configure_logging",
    "get_request_id",
    "reset_request_id",
    "set_request_id",
]
