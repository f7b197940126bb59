"""
Core logging module with stream loggers and correlation ID tracking.

Architecture:
- Multiple log streams (system, lifecycle, selection, monitor, codes)
- JSON formatting for log shipping
- Human-readable console formatting for development
- Correlation ID propagation (one run id per application instance)
- Automatic rotation of per-stream log files
"""

import logging
import logging.handlers
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

# Context variable for correlation ID
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

LOGGER_PREFIX = "appframe"


# ============================================================================
# LOG STREAM DEFINITIONS
# ============================================================================

class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"           # Startup, config, shutdown
    LIFECYCLE = "lifecycle"     # Registry, stop escalation, exit
    SELECTION = "selection"     # Rotation pools and locked queues
    MONITOR = "monitor"         # Error threshold tracking
    CODES = "codes"             # Code registry, error mapping

    ALL = (SYSTEM, LIFECYCLE, SELECTION, MONITOR, CODES)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================

def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for current context.

    Args:
        correlation_id: Optional correlation ID. If None, generates new UUID.

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for current context."""
    return _correlation_id.get()


class LogContext:
    """
    Context manager for scoped correlation ID.

    Usage:
        with LogContext("shutdown-42"):
            logger.info("Closing listeners")  # Includes correlation_id
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id or str(uuid.uuid4()))
        return _correlation_id.get()

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


# ============================================================================
# CUSTOM LOG RECORD FACTORY
# ============================================================================

_original_factory = logging.getLogRecordFactory()


def _correlation_id_factory(*args, **kwargs):
    """Custom log record factory that injects correlation ID."""
    record = _original_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


logging.setLogRecordFactory(_correlation_id_factory)


# ============================================================================
# LOGGER SETUP
# ============================================================================

_loggers_initialized = False
_console_handler: Optional[logging.Handler] = None
_console_level = logging.INFO


def setup_logging(
    log_dir: Optional[Path] = Path("logs"),
    log_level: str = "INFO",
    console_level: str = "INFO",
    json_logs: bool = True,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5
) -> None:
    """
    Initialize logging infrastructure.

    Creates one rotating log file per stream, e.g.:
    - logs/system/system.log
    - logs/lifecycle/lifecycle.log
    - logs/monitor/monitor.log

    Args:
        log_dir: Base directory for logs. None disables file logging.
        log_level: File logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        console_level: Console logging level
        json_logs: If True, use JSON formatting for files
        max_bytes: Max bytes per log file before rotation
        backup_count: Number of backup files to keep
    """
    global _loggers_initialized, _console_handler, _console_level

    if _loggers_initialized:
        return

    from .formatters import JSONFormatter, ConsoleFormatter

    root = logging.getLogger(LOGGER_PREFIX)
    root.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    root.handlers = []

    _console_level = getattr(logging, console_level.upper())
    _console_handler = logging.StreamHandler()
    _console_handler.setLevel(_console_level)
    _console_handler.setFormatter(ConsoleFormatter())
    root.addHandler(_console_handler)

    if log_dir is not None:
        file_level = getattr(logging, log_level.upper())
        for stream in LogStream.ALL:
            stream_dir = log_dir / stream
            stream_dir.mkdir(parents=True, exist_ok=True)

            handler = logging.handlers.RotatingFileHandler(
                stream_dir / f"{stream}.log",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            handler.setLevel(file_level)

            if json_logs:
                handler.setFormatter(JSONFormatter())
            else:
                handler.setFormatter(logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s'
                ))

            logger = get_logger(stream)
            logger.addHandler(handler)
            logger.propagate = True  # Also send to the console handler

    _loggers_initialized = True

    get_logger(LogStream.SYSTEM).info(
        "Logging system initialized",
        extra={
            "log_dir": str(log_dir) if log_dir else None,
            "log_level": log_level,
            "json_logs": json_logs
        }
    )


def set_debug(enabled: bool) -> None:
    """Drop the console handler to DEBUG, or restore the configured level."""
    if _console_handler is None:
        return
    _console_handler.setLevel(logging.DEBUG if enabled else _console_level)


def get_logger(stream: str) -> logging.Logger:
    """
    Get logger for specific stream.

    Args:
        stream: One of LogStream constants

    Returns:
        Logger instance for the stream

    Example:
        logger = get_logger(LogStream.LIFECYCLE)
        logger.info("Subsystem registered", extra={"subsystem": "http"})
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{stream}")
