"""Unified logging for lesefluss.

All modules log through ``UnifiedLogger.get_logger(__name__)``. The handlers
live on the ``lesefluss`` root logger and write to stderr, because the STDIO
transport owns stdout.
"""

import logging
import sys
from typing import Optional

from lesefluss.config import ServerConfig
from lesefluss.log_system.correlation import CorrelationIdFilter

ROOT_LOGGER_NAME = "lesefluss"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"


class UnifiedLogger:
    """Configures the lesefluss logger tree once and hands out loggers."""

    _initialized = False
    _handlers: list = []

    @classmethod
    def initialize_default(cls, config: Optional[ServerConfig] = None) -> None:
        """Attach stderr (and optionally file) handlers to the root logger.

        Calling this again replaces the previously installed handlers.
        """
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in cls._handlers:
            root.removeHandler(handler)
        cls._handlers = []

        level_name = (config.log_level if config else "INFO").upper()
        root.setLevel(getattr(logging, level_name, logging.INFO))
        root.propagate = False

        formatter = logging.Formatter(LOG_FORMAT)
        correlation_filter = CorrelationIdFilter()

        stream_handler = logging.StreamHandler(sys.stderr)
        cls._handlers.append(stream_handler)

        if config is not None and config.log_file:
            cls._handlers.append(logging.FileHandler(config.log_file))

        for handler in cls._handlers:
            handler.setFormatter(formatter)
            handler.addFilter(correlation_filter)
            root.addHandler(handler)

        # Quiet noisy loggers
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Return a logger that lives under the lesefluss tree."""
        if not name.startswith(ROOT_LOGGER_NAME):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        return logging.getLogger(name)

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def close(cls) -> None:
        """Flush and detach handlers installed by initialize_default."""
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in cls._handlers:
            handler.flush()
            root.removeHandler(handler)
            handler.close()
        cls._handlers = []
        cls._initialized = False
