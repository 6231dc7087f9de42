# Hey future me - SQLite can only have ONE writer at a time (even with WAL).
# "database is locked" / "database is busy" is temporary: waiting and retrying
# almost always works. Everything else fails fast.
"""Database retry utilities for handling SQLite lock errors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_lock_error(exception: BaseException) -> bool:
    """Check if an exception is a retryable database lock error.

    Args:
        exception: The exception to check

    Returns:
        True if this is a retryable lock error
    """
    if not isinstance(exception, OperationalError):
        return False

    error_msg = str(exception).lower()
    return "locked" in error_msg or "busy" in error_msg


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    description: str = "database operation",
) -> T:
    """Execute an async operation, retrying on lock errors with exponential backoff.

    Args:
        operation: Zero-argument async callable, called once per attempt
        max_attempts: Maximum attempts (>= 1)
        initial_delay: Delay before the second attempt, doubled each retry
        max_delay: Upper bound for a single delay
        description: Name used in log messages

    Returns:
        Result of the operation

    Raises:
        OperationalError: Lock error still present after the last attempt
        Exception: Any non-lock error, raised immediately
    """
    delay = initial_delay
    attempt = 1
    while True:
        try:
            return await operation()
        except OperationalError as e:
            if not is_lock_error(e) or attempt >= max_attempts:
                if attempt > 1:
                    logger.error(
                        "Database still locked after %d attempts, giving up: %s",
                        attempt,
                        description,
                    )
                raise
            logger.warning(
                "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                attempt,
                max_attempts,
                delay,
                description,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_delay)
            attempt += 1
