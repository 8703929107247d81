"""
Logging utilities for posprint.

- RequestIdFilter attaches request_id and path when running inside a Flask request
- JsonFormatter emits structured logs when POSPRINT_JSON_LOGS=true
- configure_logging() initializes root logging with journald or console output
"""

from __future__ import annotations

import logging
import os


class RequestIdFilter(logging.Filter):
    """
    Attach request-scoped metadata (request_id, path) to log records.
    Outside of a Flask request both fields are "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        from flask import g, has_request_context, request  # lazy import

        if has_request_context():
            record.request_id = getattr(g, "request_id", "-")
            record.path = request.path
        else:
            record.request_id = "-"
            record.path = "-"
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter with timestamp, level, logger, message, request_id and path.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        path = getattr(record, "path", None)
        if path is not None:
            base["path"] = path
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False)


def _json_logs_enabled() -> bool:
    return os.environ.get("POSPRINT_JSON_LOGS", "false").lower() in ("1", "true", "yes")


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure root logging for the application.

    - Sets the root level (INFO by default) and clears existing handlers
    - Chooses JSON or plain formatting based on POSPRINT_JSON_LOGS
    - Prefers systemd's JournalHandler, otherwise a StreamHandler
    - Adds RequestIdFilter so formatters can reference %(request_id)s
    - Lets Flask's app logger propagate to root

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate logs on repeated factory calls
    root.handlers = []

    formatter: logging.Formatter
    if _json_logs_enabled():
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(request_id)s %(name)s: %(message)s")

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER="posprint")
    except ImportError:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "RequestIdFilter", "configure_logging"]
