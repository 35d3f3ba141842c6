"""
Structured logging configuration.

Provides:
    • JSON lines for log shippers, coloured console lines for humans
      (``LOG_FORMAT``: auto picks JSON in production)
    • Request-scoped context (request_id, client_ip, endpoint, user_id)
    • Alert delivery fields (alert_id, contact_id, channel, outcome) read
      from ``extra`` and emitted as top-level JSON keys
    • Phone number masking for anything that reaches a log line

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger, mask_phone

    setup_logging()
    logger = get_logger(__name__)
    logger.info(
        "SMS queued for %s", mask_phone(contact.phone_number),
        extra={"alert_id": alert.id, "channel": "sms"},
    )
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

# ── Request-scoped context ──
_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Record attributes promoted to top-level JSON keys when passed via ``extra``
DELIVERY_FIELDS = ("alert_id", "contact_id", "channel", "outcome")
_EXTRA_FIELDS = DELIVERY_FIELDS + (
    "user_id", "connected_users", "duration_ms", "status_code", "endpoint",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "asyncio")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request context (middleware entry / exit)."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def update_request_context(**kwargs: Any) -> None:
    """Merge keys into the current request context (e.g. user_id after auth)."""
    _request_context.set({**_request_context.get(), **kwargs})


def mask_phone(number: Optional[str]) -> str:
    """``+15550001111`` → ``***1111``; contact numbers never hit the logs in full."""
    if not number:
        return "<none>"
    digits = "".join(ch for ch in number if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) > 4 else "***"


# ── JSON Formatter ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": settings.APP_NAME,
            "environment": settings.ENVIRONMENT,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx

        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "trace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ── Pretty Formatter ──

class PrettyFormatter(logging.Formatter):
    """Coloured console output; tags lines with request and alert ids."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        tags = []
        request_id = get_request_context().get("request_id")
        if request_id:
            tags.append(request_id[:8])
        alert_id = getattr(record, "alert_id", None)
        if alert_id:
            tags.append(f"alert:{str(alert_id)[:8]}")
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def _use_json() -> bool:
    fmt = settings.LOG_FORMAT.lower()
    if fmt == "json":
        return True
    if fmt == "pretty":
        return False
    return settings.is_production


def setup_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if _use_json() else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
