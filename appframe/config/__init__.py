"""
Configuration system with Pydantic validation.

Single source of truth for all configuration parameters.
"""

from .schema import (
    AppConfig,
    LifecycleConfig,
    LoggingConfig,
    LogLevel,
)

from .loader import (
    ConfigLoader,
    load_config,
)

from .env import env_flag, load_env
from .accessor import ConfigAccessor

__all__ = [
    "AppConfig",
    "LifecycleConfig",
    "LoggingConfig",
    "LogLevel",
    "ConfigLoader",
    "load_config",
    "env_flag",
    "load_env",
    "ConfigAccessor",
]
