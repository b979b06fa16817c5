"""
Structured logging configuration.

- Development: human-readable colored format, acting admin appended
- Production: JSON format (log aggregator compatible)
- Log level: LOG_LEVEL (config / env), WARNING under pytest

Request identity (company / acting administrator) is attached to every
record by ``RequestContextFilter`` when a Flask request is active.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

_EXTRA_FIELDS = (
    "method",
    "path",
    "remote_addr",
    "company_id",
    "actor_id",
    "action_type",
    "target_id",
)


class RequestContextFilter(logging.Filter):
    """Copy request-scoped identity from ``flask.g`` onto the log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            for attr in ("company_id", "actor_id"):
                if getattr(record, attr, None) is None:
                    setattr(record, attr, getattr(g, attr, None))
            if getattr(record, "method", None) is None:
                record.method = request.method
                record.path = request.path
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        actor = getattr(record, "actor_id", None)
        who = f" [actor={actor}]" if actor else ""
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{who}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    LOG_LEVEL comes from the app config (itself read from the environment);
    without it: DEBUG in development, WARNING under pytest, INFO otherwise.
    Development / testing → ReadableFormatter on stderr
    Production            → JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    default_level = "WARNING" if is_testing else ("INFO" if is_prod else "DEBUG")
    level_name = app.config.get("LOG_LEVEL") or default_level
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_prod else ReadableFormatter()

    # Single root handler; cleared first so repeated create_app() calls don't stack
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "flask_limiter", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
