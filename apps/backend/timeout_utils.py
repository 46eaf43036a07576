"""
Catalog API - Timeout Utilities
===============================
Deadline enforcement for awaited database work (health pings, export row
fetches).
"""

import asyncio
from typing import Awaitable, TypeVar

from exceptions import UpstreamTimeoutError
from logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


async def run_with_timeout(coro: Awaitable[T], timeout: float, operation_name: str = "operation") -> T:
    """
    Run a coroutine with a timeout.

    Args:
        coro: Coroutine to run
        timeout: Timeout in seconds
        operation_name: Name for logging

    Returns:
        Result from coroutine

    Raises:
        UpstreamTimeoutError: If operation exceeds timeout
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(
            "Operation timed out",
            operation=operation_name,
            timeout=timeout,
        )
        raise UpstreamTimeoutError(operation_name, timeout) from e
