"""
Helpers for calling the synchronous AWS SDK clients from asyncio code.
"""

import asyncio
from typing import Any, Callable, TypeVar

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking client call on a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)


async def best_effort(func: Callable[..., T], *args: Any, timeout: float, description: str, default: Any = None,
                      **kwargs: Any) -> Any:
    """
    Run a blocking call against a secondary service, never letting it fail the caller.

    Args:
        func: Blocking callable
        timeout: Seconds to wait before giving up
        description: What the call does, for the log line
        default: Value returned when the call fails or times out

    Returns:
        The call's result, or ``default``
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout)
    except asyncio.TimeoutError:
        logger.warning(f'{description} timed out after {timeout}s')
    except Exception as e:
        logger.warning(f'{description} failed: {e}')
    return default
