"""
Logging setup with JSON formatting and sweep correlation.

This module provides:
- JSON log formatting for structured logging
- A sweep ID context variable so every line emitted during one scanner sweep
  (or one enrichment batch) can be grouped
- Logger factory for consistent logger creation
"""
import logging
import json
import sys
import uuid
from datetime import datetime
from typing import Any
from contextvars import ContextVar

sweep_id_var: ContextVar[str] = ContextVar("sweep_id", default="")

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "message", "asctime", "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line: timestamp, level, logger, message, sweep_id,
    exception (if any) and any ``extra=`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        sweep_id = sweep_id_var.get()
        if sweep_id:
            log_data["sweep_id"] = sweep_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Human-readable coloured console output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        base_msg = (
            f"{timestamp} {level_color}[{record.levelname}]{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )

        sweep_id = sweep_id_var.get()
        if sweep_id:
            base_msg += f" | sweep={sweep_id}"

        if record.exc_info:
            base_msg += "\n" + self.formatException(record.exc_info)

        return base_msg


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    handler: logging.Handler | None = None,
) -> None:
    """
    Configure root logging for the scanner process.

    Args:
        level: Logging level name
        json_output: Use the JSON formatter instead of the coloured one
        handler: Optional custom handler (defaults to stdout)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    handler.setFormatter(JSONFormatter() if json_output else ColoredFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


def new_sweep_id(prefix: str) -> Any:
    """
    Start a new sweep correlation scope.

    Returns:
        Token for ``clear_sweep_id``
    """
    return sweep_id_var.set(f"{prefix}-{uuid.uuid4().hex[:8]}")


def get_sweep_id() -> str:
    return sweep_id_var.get()


def clear_sweep_id(token: Any) -> None:
    sweep_id_var.reset(token)
