"""
Shared utilities module
"""

from .logger import (
    ContextLogger,
    LogContext,
    configure_logging,
    get_correlation_id,
    get_logger,
    get_service_logger,
)

__all__ = [
    "ContextLogger",
    "LogContext",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "get_service_logger",
]
