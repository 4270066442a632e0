"""
Logging setup: JSON formatter for production, readable lines for development.

Every module logs through `logging.getLogger(__name__)`. `setup_logging` is
called once by the application factory; nothing else touches the root logger.

Fields surfaced in JSON output when a log call passes them via `extra=`:
  card_id, owner, status, attempt, error_type, path

Sensitive values (card numbers, passwords, tokens) are never passed to a logger.
"""

import json
import logging
from datetime import datetime, timezone

_EXTRA_FIELDS = ("card_id", "owner", "status", "attempt", "error_type", "path")


class JSONFormatter(logging.Formatter):
    """Format records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = str(val)
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure the root logger. Safe to call more than once."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_bankcards_handler", False):
            root.removeHandler(existing)
    handler._bankcards_handler = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
