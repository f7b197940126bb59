"""
appframe - runtime coordination toolkit.

Graceful/forced shutdown, fair and locked rotation over fixed
collections, and error-rate thresholds fed by coded errors.
"""

__version__ = "0.1.0"

from appframe.runtime import Application, LifecycleRegistry, LifecycleEvent, LifecycleState
from appframe.selection import RotationPool, LockedRotationQueue
from appframe.monitoring import ErrorThresholdMonitor
from appframe.codes import CodeRegistry, CodeKind

__all__ = [
    "Application",
    "LifecycleRegistry",
    "LifecycleEvent",
    "LifecycleState",
    "RotationPool",
    "LockedRotationQueue",
    "ErrorThresholdMonitor",
    "CodeRegistry",
    "CodeKind",
]
