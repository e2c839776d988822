"""
Logging setup for the portal.

Two output styles share one root handler on stderr:

    json      one object per line, for log shipping (production default)
    readable  coloured single-line output (development / testing default)

``LOG_FORMAT`` and ``LOG_LEVEL`` override the defaults. Request and report
attributes passed through ``extra=`` (request_id, user_id, report_id,
event_type, timing fields) are carried into both styles.
"""

import json
import logging
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "user_id", "method", "path", "status", "duration_ms", "remote_addr")
EVENT_FIELDS = ("report_id", "event_type")


def _record_extras(record: logging.LogRecord, fields) -> dict:
    return {
        name: getattr(record, name)
        for name in fields
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_record_extras(record, REQUEST_FIELDS + EVENT_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelno, '')}{level}{self.RESET}"

        context = _record_extras(record, ("request_id",) + EVENT_FIELDS)
        tags = " ".join(f"{k}={v}" for k, v in context.items())
        line = f"{self.formatTime(record, self.datefmt)} {level} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{tags}]"
        if getattr(record, "duration_ms", None) is not None:
            line += f" ({record.duration_ms:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler according to app config.

    Safe to call repeatedly: existing root handlers are replaced, so
    building several apps in one process does not duplicate output.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if production else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    style = (app.config.get("LOG_FORMAT") or ("json" if production else "readable")).lower()
    if style == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(colour=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in ("sqlalchemy.engine", "urllib3", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, format=%s)", level_name, style)
