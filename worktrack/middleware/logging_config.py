"""
Logging configuration for the lifecycle service.

Every record leaving a request carries the request id and the acting user
(``X-User-Id``) so a status change can be traced from the HTTP call through
the cascade and notification lines it produced. Service code tags records
with ``extra={"item_kind": ..., "item_id": ...}``.

- LOG_FORMAT: ``json`` or ``readable`` (default: JSON in production,
  readable in development and testing)
- LOG_LEVEL: root level (default: INFO in production, DEBUG otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Attributes copied into JSON lines when present on the record
_CONTEXT_FIELDS = ("request_id", "actor_id")
_ITEM_FIELDS = ("item_kind", "item_id", "user_id", "notification_kind")
_HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Stamp request_id / actor_id onto records emitted inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor_id", None) is None:
                record.actor_id = request.headers.get("X-User-Id")
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; http/item fields are grouped."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS + _ITEM_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        http = {key: getattr(record, key) for key in _HTTP_FIELDS if getattr(record, key, None) is not None}
        if http:
            entry["http"] = http
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
            entry["where"] = f"{record.module}.{record.funcName}:{record.lineno}"
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        tags = []
        request_id = getattr(record, "request_id", None)
        if request_id:
            tags.append(f"req={request_id}")
        item_id = getattr(record, "item_id", None)
        if item_id is not None:
            tags.append(f"{getattr(record, 'item_kind', None) or 'item'}#{item_id}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"{duration:.0f}ms")

        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{' '.join(tags)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def build_formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return ReadableFormatter(color=sys.stderr.isatty())


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(build_formatter(fmt))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session; never stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
