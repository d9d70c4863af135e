from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = str(code)
        self.message = message
        super().__init__(message)


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    ALREADY_USED = "already_used"
    UNAUTHORIZED = "unauthorized"
    PERSISTENCE_FAILURE = "persistence_failure"


HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.PERSISTENCE_FAILURE: 500,
}


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of a service call.

    Business failures come back as values with ``success=False``; services do
    not raise them.
    """

    success: bool
    data: T | None = None
    message: str = ""
    error_code: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, data: T | None = None, message: str = "") -> "ServiceResult[T]":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, kind: ErrorKind, code: str, message: str) -> "ServiceResult[T]":
        return cls(success=False, message=message, error_code=str(code), error_kind=kind)

    def to_api_error(self) -> ApiError:
        kind = self.error_kind or ErrorKind.PERSISTENCE_FAILURE
        return ApiError(status_code=HTTP_STATUS_BY_KIND[kind], code=self.error_code or "ERROR", message=self.message)

    def unwrap(self) -> T:
        """Return ``data`` or raise the matching ``ApiError`` for the HTTP layer."""
        if not self.success:
            raise self.to_api_error()
        return self.data
