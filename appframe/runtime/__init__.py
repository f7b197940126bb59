"""
Runtime package - lifecycle state machine and the application facade.

- LifecycleRegistry: register/deregister subsystems, stop escalation, exit
- Application: wiring config -> codes -> monitor -> lifecycle
"""

from .lifecycle import (
    LifecycleRegistry,
    LifecycleState,
    LifecycleEvent,
    LifecycleStatus,
    default_exit,
)
from .app import Application

__all__ = [
    "LifecycleRegistry",
    "LifecycleState",
    "LifecycleEvent",
    "LifecycleStatus",
    "default_exit",
    "Application",
]
