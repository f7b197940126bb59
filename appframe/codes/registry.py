"""
Code registry: the error/code factory and occurrence channel.

ARCHITECTURE:
- codes maps a computer readable code to a human readable message
- code() builds a CodeObject; error_code()/fail_code() also emit the
  occurrence to subscribers of that kind and return (not raise) the error
- error maps translate foreign exception types into codes

The ErrorThresholdMonitor subscribes here; nothing else in appframe
listens on a global bus.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

from appframe.logging import get_logger, LogStream

from .builtin import BUILTIN_CODES
from .errors import (
    CodedError,
    CodeKind,
    CodeObject,
    ErrorCode,
    FailCode,
    UnknownCodeError,
)

OccurrenceHandler = Callable[[CodeKind, CodeObject], None]

_KIND_CLASSES: Dict[CodeKind, Type[CodedError]] = {
    CodeKind.ERROR_CODE: ErrorCode,
    CodeKind.FAIL_CODE: FailCode,
}

_MASK_KINDS = ("code", CodeKind.ERROR_CODE.value, CodeKind.FAIL_CODE.value)


class CodeRegistry:
    """
    Holds registered codes and fans out code occurrences.

    Usage:
        codes = CodeRegistry()
        codes.register_codes({"db.down": "Database unreachable."})
        codes.subscribe(CodeKind.ERROR_CODE, on_error)

        err = codes.error_code("db.down", {"host": "db1"})
        raise err
    """

    def __init__(self, codes: Optional[Mapping[str, str]] = None):
        self.logger = get_logger(LogStream.CODES)
        self._codes: Dict[str, str] = dict(BUILTIN_CODES)
        self._handlers: Dict[CodeKind, List[OccurrenceHandler]] = {
            kind: [] for kind in CodeKind
        }
        self._error_maps: Dict[str, Type[BaseException]] = {}
        if codes:
            self.register_codes(codes)

    # -- codes ---------------------------------------------------------------

    def register_codes(self, codes: Mapping[str, str]) -> "CodeRegistry":
        """Merge code -> message pairs. Later registrations win."""
        self._codes.update(codes)
        self.logger.debug("Codes registered", extra={"count": len(codes)})
        return self

    def has(self, code: str) -> bool:
        return code in self._codes

    def code(self, code: str, data: Optional[Mapping[str, Any]] = None) -> CodeObject:
        """
        Build a code object.

        Raises:
            UnknownCodeError: If *code* was never registered
        """
        if not code or not isinstance(code, str):
            raise TypeError("`code` must be a non-empty string")
        if code not in self._codes:
            raise UnknownCodeError(code)
        return CodeObject(code=code, message=self._codes[code], data=dict(data or {}))

    def error_code(self, code: str, data: Optional[Mapping[str, Any]] = None) -> ErrorCode:
        """Build a hard error for *code* and emit an errorCode occurrence."""
        return self._build(CodeKind.ERROR_CODE, code, data, ErrorCode)

    def fail_code(self, code: str, data: Optional[Mapping[str, Any]] = None) -> FailCode:
        """Build a soft error for *code* and emit a failCode occurrence."""
        return self._build(CodeKind.FAIL_CODE, code, data, FailCode)

    def make(self, error_cls: Type[CodedError], data: Optional[Mapping[str, Any]] = None) -> CodedError:
        """Build one of the concrete coded errors through the registry, emitting its occurrence."""
        if error_cls.default_code is None:
            raise TypeError(f"{error_cls.__name__} has no default code")
        return self._build(error_cls.kind, error_cls.default_code, data, error_cls)

    def _build(self, kind, code, data, error_cls):
        code_object = self.code(code, data)
        self.emit(kind, code_object)
        return error_cls(code_object)

    # -- occurrence channel ------------------------------------------------

    def subscribe(self, kind: CodeKind, handler: OccurrenceHandler) -> None:
        self._handlers[CodeKind(kind)].append(handler)

    def unsubscribe(self, kind: CodeKind, handler: OccurrenceHandler) -> None:
        handlers = self._handlers[CodeKind(kind)]
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, kind: CodeKind, code_object: CodeObject) -> None:
        """Deliver an occurrence to every subscriber. Subscriber failures are isolated."""
        for handler in list(self._handlers[kind]):
            try:
                handler(kind, code_object)
            except Exception as e:
                self.logger.error(
                    f"Occurrence handler failed for {code_object.code}",
                    extra={"kind": kind.value, "error": str(e)},
                    exc_info=True
                )

    # -- error maps ----------------------------------------------------------

    def register_error(self, code: str, error_type: Type[BaseException]) -> "CodeRegistry":
        """Map a foreign exception type to *code*."""
        self._error_maps[code] = error_type
        return self

    def register_errors(self, errors: Mapping[str, Type[BaseException]]) -> "CodeRegistry":
        for code, error_type in errors.items():
            self.register_error(code, error_type)
        return self

    def mask_error_to_code(
        self,
        error: BaseException,
        kind: Union[str, CodeKind] = "code",
    ) -> Optional[Union[CodeObject, CodedError]]:
        """
        Translate *error* into a registered code, if its type was mapped.

        Args:
            error: Exception to look up
            kind: "code" returns a CodeObject, "errorCode"/"failCode"
                return the coded error (emitting the occurrence)

        Returns:
            The mapped code object / error, or None when nothing matches
        """
        kind = kind.value if isinstance(kind, CodeKind) else kind
        if kind not in _MASK_KINDS:
            raise ValueError(f"Invalid kind {kind!r}. Valid kinds: {', '.join(_MASK_KINDS)}")

        for code, error_type in self._error_maps.items():
            if isinstance(error, error_type):
                data = {"error": str(error), "error_type": type(error).__name__}
                if kind == "code":
                    return self.code(code, data)
                code_kind = CodeKind(kind)
                return self._build(code_kind, code, data, _KIND_CLASSES[code_kind])
        return None
