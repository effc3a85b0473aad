"""
Error taxonomy and tagged results.

Components raise ObeliskError subclasses internally and convert them to a
Result at their public boundary, so callers only ever see the closed set of
ErrorReason tags.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorReason(str, Enum):
    """Closed set of failure tags surfaced to callers"""
    VALIDATION = "validation_failed"
    EMBEDDING_FAILED = "embedding_failed"
    RETRIEVAL_FAILED = "retrieval_failed"
    LLM_FAILED = "llm_failed"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    SESSION_NOT_FOUND = "session_not_found"
    DIMENSION_MISMATCH = "dimension_mismatch"
    NOT_IMPLEMENTED = "not_implemented"
    ENQUEUE_FAILED = "enqueue_failed"
    STORAGE_FAILED = "storage_failed"


class ObeliskError(Exception):
    """Base error carrying a reason tag"""

    reason: ErrorReason = ErrorReason.STORAGE_FAILED

    def __init__(self, message: str = "", reason: Optional[ErrorReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ValidationError(ObeliskError):
    """Malformed attributes: missing field, out-of-enum kind or role"""
    reason = ErrorReason.VALIDATION


class ProviderError(ObeliskError):
    """Embedding or LLM backend failure"""

    reason = ErrorReason.LLM_FAILED

    def __init__(
        self,
        message: str = "",
        reason: Optional[ErrorReason] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message, reason)
        self.status = status


class NotFoundError(ObeliskError):
    """Referenced session, memory or chunk is absent"""
    reason = ErrorReason.NOT_FOUND


class DimensionMismatchError(ObeliskError):
    """Vector dimension does not match the store's embedding column"""
    reason = ErrorReason.DIMENSION_MISMATCH


class UnknownProviderError(ValueError):
    """Requested LLM or embedding provider is not registered"""


@dataclass
class Result:
    """
    Tagged outcome of a component operation.

    ok=True carries `value`; ok=False carries `error` (the stage that failed),
    a human-readable `detail`, and optionally the underlying `cause` tag
    (e.g. RETRIEVAL_FAILED caused by EMBEDDING_FAILED).
    """
    ok: bool
    value: Any = None
    error: Optional[ErrorReason] = None
    detail: Optional[str] = None
    cause: Optional[ErrorReason] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        error: ErrorReason,
        detail: Optional[str] = None,
        cause: Optional[ErrorReason] = None,
    ) -> "Result":
        return cls(ok=False, error=error, detail=detail, cause=cause)

    @classmethod
    def from_error(cls, exc: ObeliskError) -> "Result":
        return cls.failure(exc.reason, str(exc))

    def unwrap(self) -> Any:
        """Return the value or raise ObeliskError tagged with the failure"""
        if not self.ok:
            raise ObeliskError(self.detail or self.error.value, self.error)
        return self.value
