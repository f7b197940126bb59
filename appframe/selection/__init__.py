"""
Selection: fair rotation and locked rotation over fixed collections.
"""

from .rotation import RotationPool, validate_items
from .locked_rotation import LockedRotationQueue, LockRequest

__all__ = [
    "RotationPool",
    "validate_items",
    "LockedRotationQueue",
    "LockRequest",
]
