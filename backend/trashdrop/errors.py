# Overview: Activation error codes and the {data, error} result shape returned by services.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


BATCH_INVALID = "BATCH_INVALID"
BATCH_NOT_FOUND = "BATCH_NOT_FOUND"
BATCH_NOT_OWNED = "BATCH_NOT_OWNED"
BATCH_INACTIVE = "BATCH_INACTIVE"
BATCH_DUPLICATE = "BATCH_DUPLICATE"
BATCH_DUPLICATE_QUEUED = "BATCH_DUPLICATE_QUEUED"
ACTIVATE_RETRY_FAILED = "ACTIVATE_RETRY_FAILED"
TIMEOUT = "TIMEOUT"
BACKEND_ERROR = "BACKEND_ERROR"
QUEUE_ERROR = "QUEUE_ERROR"

# Retrying these cannot change the outcome
PERMANENT_CODES = frozenset({
    BATCH_INVALID,
    BATCH_NOT_FOUND,
    BATCH_NOT_OWNED,
    BATCH_INACTIVE,
    BATCH_DUPLICATE,
})

USER_MESSAGES = {
    BATCH_INVALID: "That code could not be read. Please scan the batch QR code again.",
    BATCH_NOT_FOUND: "We couldn't find this batch. Check the code printed on the bag pack.",
    BATCH_NOT_OWNED: "This batch is assigned to another account.",
    BATCH_INACTIVE: "This batch is no longer active.",
    BATCH_DUPLICATE: "Batch already scanned.",
    BATCH_DUPLICATE_QUEUED: "Batch already scanned and waiting to sync.",
}
GENERIC_USER_MESSAGE = "Something went wrong, please try again. Your scan will sync automatically."


class ActivationError(ValueError):
    """
    Domain error raised inside the activation path.

    Converted into Result.error at the public service boundary; callers of
    the services never see it raised.
    """

    def __init__(self, code: str, message: str, **details: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def is_permanent(self) -> bool:
        return self.code in PERMANENT_CODES

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.code, GENERIC_USER_MESSAGE)

    def to_dict(self) -> dict:
        out = {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
        }
        out.update(self.details)
        return out

    def __repr__(self) -> str:
        return f"<ActivationError code={self.code} message={self.message!r}>"


@dataclass
class Result:
    """{data, error} pair; warnings carry non-fatal problems on success."""
    data: Any = None
    error: ActivationError | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any = None, warnings: list[str] | None = None) -> "Result":
        return cls(data=data, warnings=list(warnings or []))

    @classmethod
    def failure(cls, code: str, message: str, **details: Any) -> "Result":
        return cls(error=ActivationError(code, message, **details))

    @classmethod
    def from_exception(cls, exc: BaseException, default_code: str = BACKEND_ERROR) -> "Result":
        if isinstance(exc, ActivationError):
            return cls(error=exc)
        code = getattr(exc, "code", None) or default_code
        message = str(exc) or exc.__class__.__name__
        return cls(error=ActivationError(code, message))

    def to_dict(self) -> dict:
        out = {
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
        }
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out


HTTP_STATUS = {
    BATCH_INVALID: 400,
    BATCH_NOT_OWNED: 403,
    BATCH_NOT_FOUND: 404,
    BATCH_INACTIVE: 409,
    BATCH_DUPLICATE: 409,
    BATCH_DUPLICATE_QUEUED: 409,
    QUEUE_ERROR: 500,
}


def http_status_for(error: ActivationError | None) -> int:
    """Map a service error to an HTTP status; anything unlisted is a 503 (try again later)."""
    if error is None:
        return 200
    return HTTP_STATUS.get(error.code, 503)
