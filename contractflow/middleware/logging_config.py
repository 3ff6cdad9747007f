"""
Log output for contractflow.

One stderr handler on the root logger. Production writes one JSON object
per line; development and testing write a coloured single line with the
programme/approval scope appended. LOG_LEVEL overrides the level.

Services pass their scope in ``extra=`` (``approval_id``, ``programme_id``,
``event_type``...); both formatters pick it up from the record.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request fields set by the timing middleware.
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
# Domain scope set by services and the event bus.
SCOPE_FIELDS = ("project_id", "programme_id", "approval_id", "event_type")

# Library loggers kept at WARNING; request lines come from the timing middleware.
QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter")


class JSONFormatter(logging.Formatter):
    """One JSON object per record with request and scope fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in REQUEST_FIELDS + SCOPE_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, ensure_ascii=False, default=str)

class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [Nms] approval_id=...`` with level colours."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, "")
        parts = [
            f"{colour}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET}",
            f"{record.name}: {record.getMessage()}",
        ]
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        for key in ("programme_id", "approval_id"):
            val = getattr(record, key, None)
            if val is not None:
                parts.append(f"{key}={val}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line

def configure_logging(app):
    """Install the stderr handler for ``app``; JSON unless DEBUG or TESTING."""
    is_testing = app.config.get("TESTING", False)
    as_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.setLevel(level)

    # Replaced, not appended: each create_app() call reconfigures the root.
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if as_json else "readable")
