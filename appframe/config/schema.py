"""
Configuration schema using Pydantic for validation.

Single source of truth for lifecycle, logging and error-tracking
parameters. Validates on load, fails fast on invalid config. Keys not
named here are kept as application data (see ConfigAccessor).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# ENUMS
# ============================================================================

class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================================
# LIFECYCLE CONFIGURATION
# ============================================================================

class LifecycleConfig(BaseModel):
    """
    Shutdown escalation parameters.

    A stop request while already stopping counts as an attempt. The first
    attempt arms a deadline of stop_timeout seconds; reaching stop_attempts
    exits immediately.
    """

    stop_attempts: int = Field(
        ge=1,
        default=3,
        description="Stop requests (after the first) before a forced exit"
    )

    stop_timeout: float = Field(
        gt=0,
        default=15.0,
        description="Seconds to wait for a graceful close once escalation starts"
    )

    catch_exceptions: bool = Field(
        default=True,
        description="Observe unhandled loop exceptions after ready()"
    )

    model_config = ConfigDict(validate_assignment=True)


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_dir: Optional[Path] = Field(
        default=None,
        description="Base log directory, None for console only"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="File logging level"
    )

    console_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Console logging level"
    )

    json_logs: bool = Field(
        default=True,
        description="Use JSON formatting for files"
    )

    max_bytes: int = Field(
        ge=1_000_000,
        le=100_000_000,
        default=10_000_000,
        description="Max bytes per log file"
    )

    backup_count: int = Field(
        ge=1,
        le=20,
        default=5,
        description="Number of backup files"
    )


# ============================================================================
# MASTER CONFIG
# ============================================================================

class AppConfig(BaseModel):
    """
    Master configuration schema.

    Validates on load, fails fast on invalid config.
    """

    name: str = Field(default="app", min_length=1)
    version: str = Field(default="0.0.0")

    debug: bool = Field(
        default=False,
        description="Console logs at DEBUG"
    )

    track_errors: bool = Field(
        default=False,
        description="Enable the error threshold monitor at setup"
    )

    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    codes: Dict[str, str] = Field(
        default_factory=dict,
        description="Application codes, code -> human readable message"
    )

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    @field_validator("codes")
    @classmethod
    def validate_codes(cls, v: Dict[str, str]) -> Dict[str, str]:
        for code in v:
            if not code.strip():
                raise ValueError("code names cannot be blank")
        return v
