"""
Logging setup for the conference platform.

Records carry optional context fields passed through ``extra=``:

    request fields   method, path, status, duration_ms, remote_addr, request_id
    domain fields    conference_id, item_key, job_name

``RequestContextFilter`` stamps ``request_id`` on every record emitted while a
request is being served, so service-layer lines can be joined to the access
line written by ``middleware.timing``.

Output format follows the environment: JSON lines in production, one coloured
line per record in development. ``LOG_FORMAT=json|readable`` overrides the
choice and ``LOG_LEVEL`` sets the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
DOMAIN_FIELDS = ("conference_id", "item_key", "job_name")

# Loggers that flood DEBUG output with connection-level detail
_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "smtplib")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


def _context(record: logging.LogRecord, fields) -> dict:
    values = {}
    for name in fields:
        value = getattr(record, name, None)
        if value is not None:
            values[name] = value
    return values


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped with the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(_context(record, REQUEST_FIELDS + DOMAIN_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output with domain tags and request duration."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        tags = " ".join(f"{k}={v}" for k, v in _context(record, DOMAIN_FIELDS).items())
        if tags:
            line += f" ({tags})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _wants_json(app) -> bool:
    forced = os.getenv("LOG_FORMAT", "").lower()
    if forced in ("json", "readable"):
        return forced == "json"
    return not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    as_json = _wants_json(app)
    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Tests build several apps in one process
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if as_json else "readable")
