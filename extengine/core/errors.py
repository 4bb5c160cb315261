# extengine/core/errors.py
from __future__ import annotations

from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from extengine.validation.validator import ValidationReport

__all__ = [
    "ErrorCode",
    "EngineNotReadyError",
    "ExtensionError",
    "InputError",
    "ValidationFailedError",
    "FilesystemError",
    "ArchiveError",
    "HostError",
    "StoreError",
    "StateError",
    "RateLimitError",
    "errorCodeOf",
]



class ErrorCode(str, Enum):
    """Stable error codes returned to callers of the engine."""
    INVALID_ID = "E_INVALID_ID"
    INVALID_URL = "E_INVALID_URL"
    INVALID_PATH = "E_INVALID_PATH"
    PATH_TRAVERSAL = "E_PATH_TRAVERSAL"
    ALREADY_EXISTS = "E_ALREADY_EXISTS"
    NOT_AVAILABLE = "E_NOT_AVAILABLE"
    LOAD_FAILED = "E_LOAD_FAILED"
    REMOVE_FAILED = "E_REMOVE_FAILED"
    INSTALL_FAILED = "E_INSTALL_FAILED"
    UPDATE_FAILED = "E_UPDATE_FAILED"
    PIN_LIMIT = "E_PIN_LIMIT"
    INVALID_STATE = "E_INVALID_STATE"
    RATE_LIMIT = "E_RATE_LIMIT"
    FETCH_FAILED = "E_FETCH_FAILED"
    VALIDATE_FAILED = "E_VALIDATE_FAILED"
    UNKNOWN = "E_UNKNOWN"



class EngineNotReadyError(Exception):
    """Raised when engine services are requested before buildEngine() ran."""
    pass



# ------------------------------------------------------------------ #
# Typed failures
# ------------------------------------------------------------------ #

class ExtensionError(Exception):
    """
    Base failure surfaced by the engine.

    Carries a stable `code`, a human readable `message`, a `retryable` hint and
    free-form `extra` data that ends up in the caller-facing envelope.
    """
    defaultCode: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        code: ErrorCode | str | None = None,
        message: str = "",
        *,
        retryable: bool = False,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code) if code is not None else self.defaultCode
        self.message = message
        self.retryable = retryable
        self.extra = extra or {}

    def __str__(self) -> str:
        return self.message or self.code.value

    def toDict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code.value, "error": self.message}
        if self.extra:
            out.update(self.extra)
        return out



class InputError(ExtensionError):
    """Malformed path, disallowed directory, bad URL or id, bad upload."""
    defaultCode = ErrorCode.INVALID_PATH



class ValidationFailedError(ExtensionError):
    """Manifest missing or invalid, policy deny, blocked permission."""
    defaultCode = ErrorCode.VALIDATE_FAILED

    def __init__(
        self,
        message: str,
        *,
        report: ValidationReport | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        payload = dict(extra or {})
        if report is not None:
            payload.setdefault("errors", list(report.errors))
            payload.setdefault("warnings", list(report.warnings))
            payload.setdefault("outcome", report.outcome.value)
        super().__init__(ErrorCode.VALIDATE_FAILED, message, extra=payload)
        self.report = report



class FilesystemError(ExtensionError):
    """Cannot stage, replace or remove files."""
    defaultCode = ErrorCode.INSTALL_FAILED



class ArchiveError(FilesystemError):
    """CRX or ZIP container is malformed."""
    defaultCode = ErrorCode.INSTALL_FAILED



class HostError(ExtensionError):
    """Host load, unload or remove failure."""
    defaultCode = ErrorCode.LOAD_FAILED



class StoreError(ExtensionError):
    """Store not available or store operation failure."""
    defaultCode = ErrorCode.NOT_AVAILABLE



class StateError(ExtensionError):
    """Already installed, protected system extension, pin constraints."""
    defaultCode = ErrorCode.INVALID_STATE



class RateLimitError(ExtensionError):
    defaultCode = ErrorCode.RATE_LIMIT

    def __init__(self, message: str = "Too many installation attempts", *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.RATE_LIMIT, message, retryable=True, extra=extra)



def errorCodeOf(err: BaseException) -> str:
    """Returns the caller-facing code for any exception."""
    if isinstance(err, ExtensionError):
        return err.code.value
    return ErrorCode.UNKNOWN.value
