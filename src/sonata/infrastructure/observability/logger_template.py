"""Shared logging helpers.

USAGE:
    logger = logging.getLogger(__name__)

    async with log_operation(logger, "ingest_batch", files=3):
        await pipeline.run(...)
"""

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sonata.infrastructure.observability.logging import correlation_id_var


# Yo, this context manager logs {operation}.started / .completed / .failed with a
# duration_ms field and the **context kwargs as extra fields. A fresh correlation
# id is set for the duration of the block (the previous one is restored after),
# so every log line of one batch upload or delete cascade can be grepped together.
# On exception it logs with exc_info and RE-RAISES.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[str]:
    """Log operation start/end with automatic timing.

    Args:
        logger: Module logger
        operation: Operation name (e.g. "ingest_batch", "delete_song")
        **context: Additional fields for the log records

    Yields:
        The correlation id of this operation
    """
    correlation_id = str(uuid.uuid4())
    token = correlation_id_var.set(correlation_id)
    start = time.monotonic()
    logger.info(f"{operation}.started", extra=context)
    try:
        yield correlation_id
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"{operation}.completed",
            extra={**context, "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise
    finally:
        correlation_id_var.reset(token)
