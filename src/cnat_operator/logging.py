from __future__ import annotations

import json
import logging
import sys
from typing import Any

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
        "getMessage",
    }
)

STRUCTURED_FIELDS = ("controller", "resource", "uid", "event", "reason")


class StructuredJSONFormatter(logging.Formatter):
    """Formatter that renders each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in STRUCTURED_FIELDS:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_structured_logging(level: int = logging.INFO) -> None:
    """Configure the root logger to emit structured JSON on stdout."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter())
    root_logger.addHandler(handler)

    # kopf and the kubernetes client propagate to the root handler
    logging.getLogger("kopf").setLevel(level)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


class StructuredLogger:
    """Logger that attaches controller/resource fields to log records."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log_with_fields(
        self,
        level: int,
        message: str,
        controller: str | None = None,
        resource: str | None = None,
        uid: str | None = None,
        event: str | None = None,
        reason: str | None = None,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra: dict[str, Any] = {}
        if controller is not None:
            extra["controller"] = controller
        if resource is not None:
            extra["resource"] = resource
        if uid is not None:
            extra["uid"] = uid
        if event is not None:
            extra["event"] = event
        if reason is not None:
            extra["reason"] = reason
        extra.update(kwargs)

        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def info(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.INFO, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        """Log at ERROR; pass ``exc_info=True`` to attach the active traceback."""
        self._log_with_fields(logging.ERROR, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.WARNING, message, **fields)

    def debug(self, message: str, **fields: Any) -> None:
        self._log_with_fields(logging.DEBUG, message, **fields)


# Global logger instance
logger = StructuredLogger("cnat-operator")
