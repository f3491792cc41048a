"""Exception handling decorator for MCP tools.

A tool that raises would surface as a protocol error in the client. The
decorator turns any escaped exception into the same ``success: False``
result shape the tools return for expected failures.
"""

import functools
from typing import Any, Callable, Dict

from lesefluss.log_system.unified_logger import UnifiedLogger


def exception_handler(func: Callable) -> Callable:
    """Wrap an async tool so exceptions become error results.

    Args:
        func: Async tool function

    Returns:
        Wrapped function with the same signature
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger = UnifiedLogger.get_logger(__name__)
            logger.error(f"Tool {func.__name__} failed: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "error_type": type(e).__name__,
            }

    return wrapper
