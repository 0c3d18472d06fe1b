"""
Logging setup for FormFlow.

Workflow services log every transition with ``extra={...}`` (assignment,
template, submission and user ids). Those fields are rendered by both
formatters:

- JSONFormatter: one JSON object per line, used outside debug/testing
- ReadableFormatter: coloured single line with ``key=value`` suffixes

RequestContextFilter stamps ``request_id`` and ``user_id`` from ``flask.g``
onto records emitted inside a request, so service code never has to pass
them. LOG_LEVEL overrides the default level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes copied out of ``extra={...}`` when present.
CONTEXT_KEYS = ("request_id", "user_id")
WORKFLOW_KEYS = (
    "assignment_id",
    "parent_assignment_id",
    "restored_assignment_id",
    "template_id",
    "submission_id",
    "action",
    "job_name",
)
HTTP_KEYS = ("method", "path", "status", "duration_ms", "remote_addr")


def _fields(record, keys):
    return {key: getattr(record, key) for key in keys if getattr(record, key, None) is not None}


class RequestContextFilter(logging.Filter):
    """Attach the current request id and caller id to the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_id", None) is None:
                record.user_id = g.get("jwt_user_id")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_fields(record, CONTEXT_KEYS + HTTP_KEYS + WORKFLOW_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
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
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        duration = getattr(record, "duration_ms", None)
        if isinstance(duration, (int, float)):
            line += f" [{duration:.0f}ms]"
        workflow = _fields(record, WORKFLOW_KEYS)
        if workflow:
            line += " " + " ".join(f"{k}={v}" for k, v in workflow.items())
        if getattr(record, "request_id", None):
            line += f" ({record.request_id})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``."""
    is_testing = app.config.get("TESTING", False)
    use_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if use_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs repeatedly under tests
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if use_json else "readable")
