"""
Application logging.

``setup_logging(app)`` attaches a console handler and/or a rotating file
handler according to ``ENABLE_CONSOLE_LOGGING``, ``ENABLE_FILE_LOGGING``,
``LOG_LEVEL``, ``LOG_FORMAT`` and ``LOG_DIR``; loggers named in
``LOG_QUIET_LOGGERS`` stay at WARNING or above. It is safe to call more than
once; handlers installed by a previous call are replaced.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import Flask

_HANDLER_MARKER = "_b2bsync_handler"
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, including any ``extra={...}`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def _build_formatter(app: Flask) -> logging.Formatter:
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return StructuredFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(app: Flask) -> int:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    return level if isinstance(level, int) else logging.INFO


def _remove_installed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app: Flask) -> None:
    """Configure the root and ``b2bsync`` loggers from ``app.config``."""

    level = _resolve_level(app)
    formatter = _build_formatter(app)
    root = logging.getLogger()
    _remove_installed_handlers(root)

    handlers: list[logging.Handler] = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler(sys.stdout))

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        if not os.path.isabs(log_dir):
            log_dir = os.path.join(app.root_path, log_dir)
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, f"{app.config.get('APP_NAME', 'b2bsync')}.log"),
                maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)

    root.setLevel(level)
    logging.getLogger("b2bsync").setLevel(level)
    app.logger.setLevel(level)
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    for name in app.config.get("LOG_QUIET_LOGGERS", ("urllib3",)):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
