"""
Failure taxonomy for MFA operations.

Service functions never raise for an expected failure; they return a
``Result`` whose ``error`` says what went wrong and whether the caller may
retry with the same input.
"""
import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from fastapi import status

T = TypeVar("T")


class MfaErrorCode(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    INVALID_CODE = "invalid_code"
    DISABLED = "disabled"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


_HTTP_STATUS = {
    MfaErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    MfaErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    MfaErrorCode.EXPIRED: status.HTTP_410_GONE,
    MfaErrorCode.ALREADY_CONSUMED: status.HTTP_409_CONFLICT,
    MfaErrorCode.INVALID_CODE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    MfaErrorCode.DISABLED: status.HTTP_403_FORBIDDEN,
    MfaErrorCode.TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
}


@dataclass(frozen=True)
class MfaError:
    code: MfaErrorCode
    message: str

    @property
    def retryable(self) -> bool:
        # only a wrong code may be resubmitted against the same challenge
        return self.code == MfaErrorCode.INVALID_CODE

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.code]

    def as_detail(self) -> dict:
        return {"code": self.code.value, "message": self.message}


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[MfaError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, code: MfaErrorCode, message: str) -> "Result[T]":
        return cls(error=MfaError(code=code, message=message))
