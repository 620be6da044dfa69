"""
Centralized structured logging for the Redis service.
Uses Python's standard logging with JSON formatting for production.

Every module logs through ``get_logger(__name__)``, which returns a proxy.
The proxy forwards to the standard logging tree by default, or to a custom
logger installed process-wide with ``setup_logger()``:

    from redis_service.config.logging import get_logger, setup_logger

    logger = get_logger(__name__)
    logger.info("Connection established", connection="cache")

    setup_logger(my_logger)  # my_logger has info/error/debug/warn callables
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import traceback
from datetime import datetime, timezone
from typing import Any

from redis_service.config.settings import settings
from redis_service.errors import MissingLoggerMethodError

# Capabilities a custom logger must provide, in reporting order
REQUIRED_LOGGER_METHODS: tuple[str, ...] = ("info", "error", "debug", "warn")


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format easily parseable by log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "extra_data", None):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add source location in debug mode
        if settings.debug:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")

        message = f"{color}[{timestamp}] {record.levelname:8}{self.RESET} {record.name}: {record.getMessage()}"

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            data_str = " | ".join(f"{k}={v}" for k, v in extra_data.items())
            message += f" ({data_str})"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


# =============================================================================
# Process-wide logger backend
# =============================================================================

_custom_logger: Any = None
_custom_logger_lock = threading.Lock()


def validate_logger(custom_logger: Any) -> None:
    """
    Check that a custom logger provides every required capability.

    Raises:
        MissingLoggerMethodError: Listing every missing or non-callable method.
    """
    missing = [
        method
        for method in REQUIRED_LOGGER_METHODS
        if not callable(getattr(custom_logger, method, None))
    ]
    if missing:
        raise MissingLoggerMethodError(missing)


def setup_logger(custom_logger: Any) -> None:
    """
    Replace the process-wide logger used by every subsequent log call.

    Args:
        custom_logger: Object exposing ``info``, ``error``, ``debug`` and
            ``warn`` callables accepting variadic positional arguments.

    Raises:
        MissingLoggerMethodError: If any of the four methods is absent.
    """
    global _custom_logger
    validate_logger(custom_logger)
    with _custom_logger_lock:
        _custom_logger = custom_logger


def reset_logger() -> None:
    """Restore the standard logging backend."""
    global _custom_logger
    with _custom_logger_lock:
        _custom_logger = None


def get_custom_logger() -> Any:
    """Return the installed custom logger, or None."""
    return _custom_logger


class LoggerProxy:
    """
    Logger facade that accepts structured keyword fields.

    Resolution happens on every call, so loggers obtained at import time
    follow later ``setup_logger()`` calls. A proxy created with an explicit
    ``backend`` always logs there instead.
    """

    _CUSTOM_METHODS = {
        logging.DEBUG: "debug",
        logging.INFO: "info",
        logging.WARNING: "warn",
        logging.ERROR: "error",
    }

    def __init__(self, name: str, backend: Any = None) -> None:
        self._name = name
        self._backend = backend
        self._std_logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._name

    def _log(self, level: int, msg: str, args: tuple, fields: dict[str, Any]) -> None:
        exc_info = fields.pop("exc_info", None)
        backend = self._backend if self._backend is not None else _custom_logger

        if backend is None:
            self._std_logger.log(
                level,
                msg,
                *args,
                exc_info=exc_info,
                extra={"extra_data": fields or None},
            )
            return

        if args:
            msg = msg % args
        if exc_info:
            fields["exception"] = traceback.format_exc()
        method = getattr(backend, self._CUSTOM_METHODS[level])
        if fields:
            method(f"[{self._name}] {msg}", fields)
        else:
            method(f"[{self._name}] {msg}")

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, args, fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.INFO, msg, args, fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.WARNING, msg, args, fields)

    warn = warning

    def error(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.ERROR, msg, args, fields)


def setup_logging() -> None:
    """
    Configure the standard logging tree.
    Call this once at application startup; libraries should not.
    """
    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if settings.environment == "production":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = DevelopmentFormatter()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from the driver
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str, backend: Any = None) -> LoggerProxy:
    """
    Get a logger instance with the given name.

    Usage:
        from redis_service.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Script bound", connection="main", script="ExpireIfNoTTL")
        logger.error("Shutdown failed", connection="main", exc_info=True)
    """
    return LoggerProxy(name, backend)
