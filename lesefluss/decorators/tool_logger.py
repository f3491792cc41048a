"""Logging decorator for MCP tools."""

import functools
import time
from typing import Any, Callable, Dict, Optional

from lesefluss.log_system.correlation import generate_correlation_id, set_correlation_id
from lesefluss.log_system.unified_logger import UnifiedLogger

MAX_PARAM_LENGTH = 200


def _summarize(value: Any) -> str:
    text = repr(value)
    if len(text) > MAX_PARAM_LENGTH:
        return text[:MAX_PARAM_LENGTH] + "..."
    return text


def tool_logger(func: Callable, config: Optional[Dict[str, Any]] = None) -> Callable:
    """Log each tool invocation under its own correlation id.

    Args:
        func: Async tool function
        config: Server configuration as a dict (``config.__dict__``)

    Returns:
        Wrapped function with the same signature
    """
    server_name = (config or {}).get("name", "lesefluss")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = UnifiedLogger.get_logger(__name__)
        set_correlation_id(generate_correlation_id())

        params = {k: _summarize(v) for k, v in kwargs.items() if k != "ctx"}
        logger.info(f"[{server_name}] {func.__name__} called with {params}")

        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.warning(f"{func.__name__} raised {type(e).__name__} after {elapsed:.1f}ms")
            raise

        elapsed = (time.perf_counter() - start) * 1000
        success = result.get("success") if isinstance(result, dict) else None
        logger.info(f"{func.__name__} finished in {elapsed:.1f}ms (success={success})")
        return result

    return wrapper
