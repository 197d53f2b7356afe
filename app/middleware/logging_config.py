"""
Structured logging configuration.

- Development: one readable line per record
- Production: one JSON object per record (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable

Workflow code logs with ``extra={"event_type": ..., "workflow": ..., "entity_id": ...}``.
Inside a request the filter below adds ``request_id`` and ``actor`` as well,
so every transition line can be traced back to the call and the caller.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

_EXTRA_KEYS = (
    "request_id",
    "actor",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "event_type",
    "workflow",
    "entity_id",
)


class RequestContextFilter(logging.Filter):
    """Attach request_id / actor from flask.g when a request is active."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor", None) is None:
                actor = getattr(g, "actor", None)
                record.actor = actor.email if actor is not None else None
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line formatter for development: time, level, entity, message."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        parts = [ts, f"{record.levelname:<7}", record.name]
        workflow = getattr(record, "workflow", None)
        entity_id = getattr(record, "entity_id", None)
        if workflow and entity_id is not None:
            parts.append(f"[{workflow}#{entity_id}]")
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"({rid})")
        line = " ".join(parts) + " " + record.getMessage()
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Development  -> ReadableFormatter on stderr
    Production   -> JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    # Single root stream handler; cleared first so tests do not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic", "email_validator"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
