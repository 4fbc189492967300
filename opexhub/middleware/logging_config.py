"""
Structured logging configuration.

Two renderings of the same records:

- json      one object per line for log aggregation (production default)
- readable  coloured single line for a terminal (development / testing)

Services attach workflow context through ``extra=``; both formatters pick up
the keys in ``CONTEXT_KEYS`` so a stage action can be traced by
initiative, transaction or actor.
"""

import json
import logging
import sys
from datetime import datetime, timezone

REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
CONTEXT_KEYS = ("initiative_id", "transaction_id", "stage_number", "action", "actor_id", "entry_id")

_NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


def _context(record: logging.LogRecord, keys) -> dict:
    return {key: getattr(record, key) for key in keys if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context keys are flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(_context(record, REQUEST_KEYS))
        entry.update(_context(record, CONTEXT_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO     opexhub.services.workflow_engine: ... {initiative=3 stage=4}``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # short labels for the trailing context block
    LABELS = {
        "initiative_id": "initiative",
        "transaction_id": "txn",
        "stage_number": "stage",
        "action": "action",
        "actor_id": "actor",
        "entry_id": "entry",
    }

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        ctx = _context(record, CONTEXT_KEYS)
        if ctx:
            line += " {" + " ".join(f"{self.LABELS[k]}={v}" for k, v in ctx.items()) + "}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Level: ``LOG_LEVEL`` config, else INFO in production and DEBUG otherwise.
    Format: ``LOG_FORMAT`` config ("json" / "readable"), else json only in
    production.
    """
    is_prod = not app.debug and not app.testing
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session; never stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
