"""Logging configuration with per-currency context.

Provides:
- A JSON formatter for structured output
- A filter stamping the current currency code and trigger on each record
- A context manager used by event handlers to scope that context
"""
from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

crypto_code_var: ContextVar[Optional[str]] = ContextVar("crypto_code", default=None)
trigger_var: ContextVar[Optional[str]] = ContextVar("trigger", default=None)

_RESERVED_ATTRS = frozenset((
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "crypto_code",
    "trigger",
))


class CurrencyContextFilter(logging.Filter):
    """Adds crypto_code and trigger context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.crypto_code = crypto_code_var.get()
        record.trigger = trigger_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if getattr(record, "crypto_code", None):
            log_data["crypto_code"] = record.crypto_code
        if getattr(record, "trigger", None):
            log_data["trigger"] = record.trigger

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via logger.x(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure root logging for the service.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON lines instead of the plain text format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(crypto_code)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(CurrencyContextFilter())
    root_logger.addHandler(console_handler)


class LogContext:
    """Context manager for temporary currency / trigger logging context."""

    def __init__(self, crypto_code: Optional[str] = None, trigger: Optional[str] = None):
        self.crypto_code = crypto_code
        self.trigger = trigger
        self._tokens = []

    def __enter__(self) -> "LogContext":
        if self.crypto_code:
            self._tokens.append((crypto_code_var, crypto_code_var.set(self.crypto_code)))
        if self.trigger:
            self._tokens.append((trigger_var, trigger_var.set(self.trigger)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
