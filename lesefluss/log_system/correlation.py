"""Correlation ids for tying log lines to one tool call or request."""

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_initialization_correlation_id: Optional[str] = None


def generate_correlation_id() -> str:
    """Generate a new correlation id of the form ``req_<12 hex chars>``."""
    return f"req_{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Current correlation id, falling back to the startup id if one is set."""
    return _correlation_id.get() or _initialization_correlation_id


def set_initialization_correlation_id(correlation_id: str) -> None:
    global _initialization_correlation_id
    _initialization_correlation_id = correlation_id


def clear_initialization_correlation_id() -> None:
    global _initialization_correlation_id
    _initialization_correlation_id = None


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with ``correlation_id`` so formatters can use it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True
