"""
Logging setup for the test manager.

Two output shapes, chosen by LOG_FORMAT (``json`` | ``readable``):
production defaults to one JSON object per line, development and tests
to a short colored line. Every record is stamped with the request id set
by the timing middleware, so the lines of one API call (and of a run
started by it) can be grouped.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

QUIET_LOGGERS = (
    "werkzeug",
    "sqlalchemy.engine",
    "urllib3",
    "httpx",
    "openai",
    "anthropic",
    "google_genai",
)


class RequestContextFilter(logging.Filter):
    """Attach request_id / user_id from flask.g when a request is active."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if not hasattr(record, "request_id"):
                record.request_id = getattr(g, "request_id", None)
            if not hasattr(record, "user_id"):
                record.user_id = getattr(g, "jwt_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    CONTEXT_FIELDS = (
        "request_id",
        "user_id",
        "method",
        "path",
        "status",
        "duration_ms",
        "remote_addr",
        "project_id",
        "test_result_id",
        "provider",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in self.CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = f"{record.levelname:<7}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"
        rid = getattr(record, "request_id", None)
        prefix = f"[{rid}] " if rid else ""
        line = f"{ts} {level} {prefix}{record.name}: {record.getMessage()}"
        run_id = getattr(record, "test_result_id", None)
        if run_id is not None:
            line += f" (run {run_id})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(app) -> str:
    fmt = (os.getenv("LOG_FORMAT") or app.config.get("LOG_FORMAT") or "").lower()
    if fmt in ("json", "readable"):
        return fmt
    production = not app.config.get("DEBUG") and not app.config.get("TESTING")
    return "json" if production else "readable"


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    LOG_LEVEL (env, then app config) sets the level; it defaults to INFO for
    JSON output and DEBUG otherwise. Re-running replaces the handler, since
    the test suite builds more than one app.
    """
    fmt = _resolve_format(app)
    level_name = (
        os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or ("INFO" if fmt == "json" else "DEBUG")
    ).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter(color=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging ready (level=%s, format=%s)", level_name, fmt)
