"""
Structured logging configuration.

JSON lines in production, plain text in development. Composition logs carry
their context (cache key, state, provenance, attempts) as structured fields:

    logger.info("Composition cache hit", extra=log_fields(cache_key=key, state=state))

The JSON formatter merges those fields into the record; the text formatter
appends them as key=value pairs.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict
from core.config import settings

SERVICE_NAME = "workout-composition"
CACHE_KEY_PREFIX_LEN = 12


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def log_fields(**fields: Any) -> Dict[str, Dict[str, Any]]:
    """
    Build the `extra=` argument for a structured log call.

    Enum members become their values, None fields are dropped and cache keys
    are shortened to a readable prefix.
    """
    extra_fields = {}
    for name, value in fields.items():
        if value is None:
            continue
        if name == "cache_key":
            value = value[:CACHE_KEY_PREFIX_LEN]
        extra_fields[name] = _plain(value)
    return {"extra_fields": extra_fields}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with structured fields appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "extra_fields", None)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def setup_logging(level: str = None, fmt: str = None):
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    level = level or settings.LOG_LEVEL
    fmt = fmt or settings.LOG_FORMAT
    log_level = getattr(logging, level.upper(), logging.INFO)

    if fmt == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Generation SDKs and the HTTP layer log every request at INFO
    for noisy in ("sqlalchemy.engine", "urllib3", "httpx", "openai", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
