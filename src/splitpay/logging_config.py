"""Structured logging configuration with payment-attempt correlation.

This module provides structured JSON logging with:
- Intent and attempt IDs attached to every record emitted during a flow
- The chain being settled on
- Consistent log formatting for console or file output
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

# Context variables for correlation tracking
intent_id_var: ContextVar[Optional[str]] = ContextVar("intent_id", default=None)
attempt_id_var: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)
chain_var: ContextVar[Optional[str]] = ContextVar("chain", default=None)

_CONTEXT_FIELDS = ("intent_id", "attempt_id", "chain")

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", *_CONTEXT_FIELDS,
})


class PaymentContextFilter(logging.Filter):
    """Logging filter that adds the current payment context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.intent_id = intent_id_var.get()
        record.attempt_id = attempt_id_var.get()
        record.chain = chain_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for an application embedding splitpay.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or simple format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(intent_id)s/%(attempt_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PaymentContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PaymentContextFilter())
        root_logger.addHandler(file_handler)


def generate_attempt_id() -> str:
    """Generate a new attempt ID."""
    return f"att_{uuid.uuid4().hex[:16]}"


def get_intent_id() -> Optional[str]:
    return intent_id_var.get()


def get_attempt_id() -> Optional[str]:
    return attempt_id_var.get()


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(
        self,
        intent_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        chain: Optional[str] = None,
    ):
        self.intent_id = intent_id
        self.attempt_id = attempt_id
        self.chain = chain
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        if self.intent_id:
            self._tokens.append((intent_id_var, intent_id_var.set(self.intent_id)))
        if self.attempt_id:
            self._tokens.append((attempt_id_var, attempt_id_var.set(self.attempt_id)))
        if self.chain:
            self._tokens.append((chain_var, chain_var.set(self.chain)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


def log_payment(
    logger: logging.Logger,
    level: str,
    message: str,
    intent_id: Optional[str] = None,
    amount: Optional[str] = None,
    chain: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Log a payment-related message with context."""
    extra = kwargs.copy()
    if intent_id:
        extra["payment_intent"] = intent_id
    if amount:
        extra["amount"] = amount
    if chain:
        extra["settlement_chain"] = chain
    getattr(logger, level.lower())(message, extra=extra)
