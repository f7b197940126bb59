"""
Monitoring: error occurrence thresholds.
"""

from .error_limits import (
    ErrorThresholdMonitor,
    LimitRule,
    LimitSnapshot,
    CodeStats,
)

__all__ = [
    "ErrorThresholdMonitor",
    "LimitRule",
    "LimitSnapshot",
    "CodeStats",
]
