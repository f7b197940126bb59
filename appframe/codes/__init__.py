"""
Codes: coded errors and the registry that builds and emits them.
"""

from .errors import (
    CodeKind,
    CodeObject,
    CodedError,
    ErrorCode,
    FailCode,
    ConstructionError,
    CorruptedStateError,
    AlreadySetupError,
    LockTimeoutError,
    NotCollectionError,
    UnknownCodeError,
)
from .registry import CodeRegistry

__all__ = [
    "CodeKind",
    "CodeObject",
    "CodedError",
    "ErrorCode",
    "FailCode",
    "ConstructionError",
    "CorruptedStateError",
    "AlreadySetupError",
    "LockTimeoutError",
    "NotCollectionError",
    "UnknownCodeError",
    "CodeRegistry",
]
