"""
Shared Logger

Centralized logging configuration for the messaging core.

Every log line emitted through ``ContextLogger`` carries the fields of a
``LogContext`` (correlation id, recipient, message id, phone number id) so a
single delivery can be followed across the webhook, dispatcher and provider
layers.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, UTC
from typing import Any

# Correlation id of the request currently being served (set by middleware)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Return the correlation id bound to the current task, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> Any:
    """Bind a correlation id to the current task. Returns a reset token."""
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token: Any) -> None:
    """Restore the correlation id that was active before ``set_correlation_id``."""
    _correlation_id.reset(token)


def new_correlation_id(prefix: str = "req") -> str:
    """Generate a fresh correlation id such as ``req_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class LogContext:
    """
    Per-operation diagnostic context.

    Created once per request or outbound operation and never mutated; use
    ``with_fields`` to derive a copy that adds e.g. the provider message id
    once it is known.
    """

    correlation_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    recipient: str | None = None
    message_id: str | None = None
    phone_number_id: str | None = None

    @classmethod
    def new(cls, prefix: str = "op", **kwargs: Any) -> "LogContext":
        """Create a context, reusing the request correlation id when one is bound."""
        correlation_id = get_correlation_id() or new_correlation_id(prefix)
        return cls(correlation_id=correlation_id, **kwargs)

    def with_fields(self, **changes: Any) -> "LogContext":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def as_log_fields(self) -> dict[str, Any]:
        """Fields to attach to a log record (unset fields are omitted)."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            data[f.name] = value.isoformat() if isinstance(value, datetime) else value
        return data


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data is not None:
            log_data["extra"] = extra_data

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console log formatter."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format with colors, appending structured fields when present."""
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        message = super().format(record)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            pairs = " ".join(f"{key}={value}" for key, value in extra_data.items())
            message = f"{message} | {pairs}"
        return message


class ContextLogger:
    """Logger with context support."""

    def __init__(self, name: str, context: dict[str, Any] | None = None):
        """
        Initialize context logger.

        Args:
            name: Logger name
            context: Default context to include in all logs
        """
        self._logger = logging.getLogger(name)
        self._context = context or {}

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def with_context(self, **kwargs) -> "ContextLogger":
        """Create new logger with additional context."""
        new_context = {**self._context, **kwargs}
        return ContextLogger(self._logger.name, new_context)

    def bind(self, log_context: LogContext | None) -> "ContextLogger":
        """Create new logger carrying the fields of a ``LogContext``."""
        if log_context is None:
            return self
        return self.with_context(**log_context.as_log_fields())

    def _log(self, level: int, message: str, exc_info: Any = None, **kwargs) -> None:
        extra = {**self._context, **kwargs}
        self._logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra}, stacklevel=3)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        """Log critical message."""
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, message, exc_info=True, **kwargs)


def configure_logging(
    level: str = "INFO",
    format_type: str = "colored",
    log_file: str | None = None,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'colored', 'json', or 'plain'
        log_file: Optional file path for file logging
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if format_type == "json":
        console_handler.setFormatter(JSONFormatter())
    elif format_type == "colored":
        console_handler.setFormatter(
            ColoredFormatter(
                "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO, which duplicates the provider client logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str, context: dict[str, Any] | None = None) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        context: Default context

    Returns:
        ContextLogger instance
    """
    return ContextLogger(name, context)


def get_api_logger(route_name: str) -> ContextLogger:
    """Get logger for API routes."""
    return get_logger(f"api.{route_name}", {"component": "api", "route": route_name})


def get_service_logger(service_name: str) -> ContextLogger:
    """Get logger for service modules."""
    return get_logger(f"service.{service_name}", {"component": "service", "service": service_name})
