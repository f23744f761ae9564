"""Structured logging for dispatch runs.

A dispatch binds its notification id as the correlation id, so every adapter
line written during one fan-out can be grouped. Dispatch fields passed as
``extra`` (channel, recipient id, error code, ...) are promoted to top-level
JSON keys; anything else lands under ``extra``.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

DISPATCH_FIELDS = (
    "notification_id",
    "channel",
    "template_id",
    "recipient_id",
    "code",
    "provider",
    "message_id",
)

# Attributes every LogRecord carries; never treated as extra fields
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id", "taskName"}

NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "celery", "asyncio")


def get_correlation_id() -> Optional[str]:
    """Return the correlation id bound to the current context, if any."""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind a correlation id for the duration of a block.

    The previous binding is restored on exit, so nested scopes and
    concurrently running tasks keep their own ids.
    """
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the caller-supplied ``extra`` values of a record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class CorrelationIdFilter(logging.Filter):
    """Stamp each record with the active correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = get_correlation_id()
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        fields = extra_fields(record)
        for name in DISPATCH_FIELDS:
            if name in fields:
                entry[name] = fields.pop(name)
        if fields:
            entry["extra"] = fields

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {"type": exc_type.__name__, "message": str(exc_value)}
            if self.include_stack_trace:
                entry["exception"]["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines: ``<time> <level> <logger> [<cid>] <message> k=v ...``."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s [%(cid)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        record.cid = getattr(record, "correlation_id", None) or "-"
        line = super().format(record)
        fields = {k: v for k, v in extra_fields(record).items() if k != "cid"}
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Configure the root logger with a single stdout handler.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of key=value text
        include_stack_trace: Include tracebacks in JSON error entries
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter(include_stack_trace) if json_format else KeyValueFormatter()
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _emit(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException],
    fields: dict[str, Any],
) -> None:
    fields.setdefault("correlation_id", get_correlation_id())
    logger.log(level, message, exc_info=exception, extra=fields)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with dispatch context.

    Args:
        logger: Logger instance
        message: Error message
        exception: Exception whose traceback is attached
        **extra: Context fields such as ``recipient_id`` or ``code``
    """
    _emit(logger, logging.ERROR, message, exception, extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _emit(logger, logging.WARNING, message, None, extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _emit(logger, logging.INFO, message, None, extra)
