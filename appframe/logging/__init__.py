"""
Logging infrastructure for appframe.

Features:
- One named logger per stream (system, lifecycle, selection, monitor, codes)
- JSON structured file logs, readable console logs
- Correlation ID tracking (the application run id)
- Log rotation
"""

from .logger import (
    get_logger,
    setup_logging,
    set_debug,
    LogContext,
    set_correlation_id,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "set_debug",
    "LogContext",
    "set_correlation_id",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
]
