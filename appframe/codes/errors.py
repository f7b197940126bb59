"""
Coded error types.

Every error carries a computer readable ``code``, a human readable
``message`` and free-form ``data``. Two families:

- ErrorCode: hard application errors (invariant violations, misuse).
- FailCode:  soft errors (timeouts, validation) that callers expect.

The concrete errors below carry a default code so they can be built
without a CodeRegistry; a registry builds the same types when it needs
the occurrence to be observed by the error monitor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from .builtin import BUILTIN_CODES


class CodeKind(str, Enum):
    """Category of a code occurrence."""
    ERROR_CODE = "errorCode"
    FAIL_CODE = "failCode"


@dataclass(frozen=True)
class CodeObject:
    """Immutable (code, message, data) triple produced by the registry."""
    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.data}


class CodedError(Exception):
    """Base class for all coded errors."""

    kind: ClassVar[CodeKind]
    default_code: ClassVar[Optional[str]] = None

    def __init__(self, code_object: Optional[CodeObject] = None, **data: Any):
        if code_object is None:
            if self.default_code is None:
                raise TypeError(f"{type(self).__name__} requires a code object")
            code_object = CodeObject(
                code=self.default_code,
                message=BUILTIN_CODES[self.default_code],
                data=data,
            )
        super().__init__(code_object.message)
        self.code = code_object.code
        self.message = code_object.message
        self.data = dict(code_object.data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ErrorCode(CodedError):
    """Hard application error."""
    kind = CodeKind.ERROR_CODE


class FailCode(CodedError):
    """Soft, expected failure."""
    kind = CodeKind.FAIL_CODE


# ============================================================================
# CONCRETE ERRORS
# ============================================================================

class ConstructionError(ErrorCode, ValueError):
    """Rotation collection is not a sequence, or is empty."""
    default_code = "rotation.invalid_items"


class CorruptedStateError(ErrorCode, RuntimeError):
    """Rotation used-set was tampered with and no index is available."""
    default_code = "rotation.corrupted_state"


class AlreadySetupError(ErrorCode, RuntimeError):
    """setup() called twice on the same application."""
    default_code = "app.already_setup"


class LockTimeoutError(FailCode, TimeoutError):
    """
    Lock request not admitted in time.

    Delivered to the request callback, never raised by next().
    """
    default_code = "rotation.locked_timeout"


class UnknownCodeError(LookupError):
    """Requested code was never registered."""

    def __init__(self, code: str):
        super().__init__(f"No code registered for: {code}")
        self.code = code


class NotCollectionError(ErrorCode, TypeError):
    """Config value asked to be sampled is not a list or mapping."""
    default_code = "config.sample_not_collection"
