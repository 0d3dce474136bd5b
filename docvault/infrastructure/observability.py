"""Structured Logging: JSON formatter and setup for store and workflow logs.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (collection, document_id, workflow, error_code, attempt,
      correlation_id) surfaced when present
    - JSON format in production, human-readable in development
    - setup_logging() is safe to call more than once (no duplicate handlers)

Design Decisions:
    - JSONFormatter over third-party libs: stdlib logging is the only dependency
    - setup_logging called once on startup via lifespan (docvault/main.py)
"""

import logging
import json
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "collection", "document_id", "workflow", "error_code",
    "attempt", "correlation_id",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Configure root logging for the application and return the installed handler."""
    handler = logging.StreamHandler()
    handler.set_name("docvault")
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    for existing in list(logging.root.handlers):
        if existing.get_name() == "docvault":
            logging.root.removeHandler(existing)
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
