"""Observability infrastructure for structured logging."""

from sonata.infrastructure.observability.logger_template import log_operation
from sonata.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "log_operation",
    "set_correlation_id",
]
