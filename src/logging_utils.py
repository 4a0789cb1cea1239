"""Logging setup with per-request correlation ids.

Every tip submission runs inside a CorrelationIdContext so the log lines of
one payment attempt (decode, checks, settlement, ledger write) can be
grepped together.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
    '"correlation_id": "%(correlation_id)s", "logger": "%(name)s", '
    '"message": "%(message)s"}'
)
TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Stamp the active correlation id on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure the root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(JSON_FORMAT if log_format == "json" else TEXT_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Return a new short correlation id for a tip request."""
    return f"tip-{uuid.uuid4().hex[:12]}"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class CorrelationIdContext:
    """Context manager binding a correlation id to the current task.

    Args:
        correlation_id: Id to bind. A new one is generated when omitted.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token = None

    def __enter__(self) -> str:
        self._token = correlation_id_var.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        correlation_id_var.reset(self._token)
