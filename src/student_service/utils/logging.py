"""
Logging and error handling framework for student-service.

This module provides:
- Structured logging configuration
- The base exception hierarchy
- Context-aware logging utilities
- Performance and audit logging decorators
"""

import functools
import json
import logging
import sys
import time
import traceback
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class LogContext(str, Enum):
    """Log context categories for structured logging."""

    MIGRATION = "migration"
    CHANGELOG = "changelog"
    LEDGER = "ledger"
    DATABASE = "database"
    WEB = "web"
    CLI = "cli"


class StudentServiceException(Exception):
    """Base exception class for all student-service errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)


class ConfigurationError(StudentServiceException):
    """Errors related to configuration and setup."""

    pass


class DatabaseError(StudentServiceException):
    """Errors related to database operations."""

    pass


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    _STANDARD_FIELDS = {
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
        "getMessage",
        "context",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "context"):
            log_data["context"] = record.context

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_FIELDS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ContextualLogger:
    """Logger that stamps every record with its component context."""

    def __init__(self, name: str, context: LogContext):
        self.logger = logging.getLogger(name)
        self.context = context.value

    def _log(
        self,
        level: int,
        message: str,
        extra_context: dict[str, Any] | None = None,
        exception: BaseException | None = None,
    ) -> None:
        extra: dict[str, Any] = {"context": self.context, **(extra_context or {})}
        self.logger.log(level, message, exc_info=exception, extra=extra)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, exception: Exception | None = None, **kwargs) -> None:
        """Log error message with context and optional exception."""
        self._log(logging.ERROR, message, kwargs, exception)

    def critical(
        self, message: str, exception: Exception | None = None, **kwargs
    ) -> None:
        """Log critical message with context and optional exception."""
        self._log(logging.CRITICAL, message, kwargs, exception)


def get_logger(name: str, context: LogContext) -> ContextualLogger:
    """Get a contextual logger instance."""
    return ContextualLogger(name, context)


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    enable_structured: bool = True,
    enable_console: bool = True,
) -> None:
    """Replace the root handlers with console and/or file output.

    Args:
        log_level: Minimum level name, case-insensitive.
        log_file: Also write records here; parent directories are created.
        enable_structured: One JSON object per line instead of plain text.
        enable_console: Write to stderr.
    """
    formatter: logging.Formatter = (
        StructuredFormatter()
        if enable_structured
        else logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    handlers: list[logging.Handler] = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(log_level.upper())
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # SQL echo is controlled by the engine, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def log_performance(log_context: LogContext = LogContext.MIGRATION):
    """Decorator logging how long a migration pass took, and whether it failed."""

    def decorator(func: Callable) -> Callable:
        logger = get_logger(func.__module__, log_context)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            status = "error"
            try:
                result = func(*args, **kwargs)
                status = "success"
                return result
            finally:
                elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
                log = logger.info if status == "success" else logger.warning
                log(
                    f"Performance: {func.__name__} {status}",
                    function=func.__name__,
                    elapsed_ms=elapsed_ms,
                    status=status,
                )

        return wrapper

    return decorator


def audit_log(action: str, log_context: LogContext = LogContext.MIGRATION):
    """Decorator recording start and outcome of a schema-changing operation."""

    def decorator(func: Callable) -> Callable:
        logger = get_logger(f"{func.__module__}.audit", log_context)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger.info(f"Audit: {action} started", action=action)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Audit: {action} failed",
                    action=action,
                    status="error",
                    error=f"{type(e).__name__}: {e}",
                )
                raise

            logger.info(
                f"Audit: {action} completed successfully",
                action=action,
                status="success",
                changesets=len(result) if isinstance(result, list) else None,
            )
            return result

        return wrapper

    return decorator
