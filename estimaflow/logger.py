"""
Structured JSON Logging.

Every engine component logs one JSON object per line.  Approvals run on
the caller's thread while notifications and cloud sync run on daemon
threads, so each line carries the thread name and any fixed context the
component was created with (``component="sync"``, ...).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO


class JSONFormatter(logging.Formatter):
    """Render a record as ``{"timestamp", "level", "logger_name", "thread", "message", ...}``.

    Fields passed through ``extra=`` (or attached by :class:`ContextFilter`)
    are grouped under ``"extra"``; a traceback, when present, goes under
    ``"exception"``.
    """

    _RESERVED: frozenset[str] = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra = {
            key: value if isinstance(value, (int, float, bool)) else str(value)
            for key, value in record.__dict__.items()
            if key not in self._RESERVED
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Attach fixed key/value pairs to every record passing through."""

    def __init__(self, context: dict[str, str]) -> None:
        super().__init__()
        self._context = dict(context)

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self._context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class StructuredLogger:
    """Injectable wrapper around a JSON-configured ``logging.Logger``.

    Handlers are attached once per logger name: stdout always, plus a
    rotating file when ``LOG_FILE`` (or *log_file*) is non-empty.

    Usage::

        log = StructuredLogger(name="estimaflow.sync", context={"component": "sync"})
        log.warning("Sync cycle failed", exc_info=True)
    """

    def __init__(
        self,
        name: str = "estimaflow",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        context: Optional[dict[str, str]] = None,
    ) -> None:
        # Imported here: config logs through the stdlib logger at import time.
        from estimaflow.config import get_config

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)

        if context:
            self._logger.addFilter(ContextFilter(context))

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        cfg = get_config()
        target = log_file if log_file is not None else cfg.LOG_FILE
        if not target:
            return
        try:
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(path),
                maxBytes=cfg.LOG_MAX_BYTES,
                backupCount=cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file %s unavailable (%s); logging to console only.", target, exc
            )
            return
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "estimaflow", **context: str) -> StructuredLogger:
    """``StructuredLogger`` named ``estimaflow.<name>`` with *context* on every line."""
    qualified = name if name.startswith("estimaflow") else f"estimaflow.{name}"
    return StructuredLogger(name=qualified, context=context or None)
