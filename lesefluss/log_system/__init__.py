"""Logging setup for lesefluss."""

from .correlation import (
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .unified_logger import UnifiedLogger

__all__ = [
    "UnifiedLogger",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]
