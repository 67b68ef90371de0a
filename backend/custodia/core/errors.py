"""
Explicit service outcomes.

Services return ``Ok(value)`` or ``Fail(kind, message)`` instead of raising, so every
router decides per kind how a failure is rendered (status code, header, redirect).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse, Response

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    EXPIRED = "EXPIRED"
    TAMPERED = "TAMPERED"
    SCOPE_MISMATCH = "SCOPE_MISMATCH"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


LINK_FAILURES = frozenset({ErrorKind.EXPIRED, ErrorKind.TAMPERED, ErrorKind.SCOPE_MISMATCH})

HTTP_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.TAMPERED: status.HTTP_410_GONE,
    ErrorKind.SCOPE_MISMATCH: status.HTTP_410_GONE,
    ErrorKind.UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
}

UPSTREAM_MESSAGE = "The verification service is unavailable. Please try again later."


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None


@dataclass(frozen=True)
class Fail:
    kind: ErrorKind
    message: str
    details: dict = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]


Result = Union[Ok[T], Fail]


def unwrap(result: Result) -> Any:
    """Returns the value of an ``Ok`` or raises the matching HTTPException."""
    if isinstance(result, Fail):
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result.value


def error_response(failure: Fail, **extra: Any) -> JSONResponse:
    body = {"error": failure.message, "kind": failure.kind.value}
    body.update(failure.details)
    body.update(extra)
    return JSONResponse(status_code=failure.status_code, content=body)


def link_error(failure: Fail) -> Response:
    """410 with the reason in ``X-Link-Error``; byte endpoints never carry an error body."""
    return Response(status_code=status.HTTP_410_GONE, headers={"X-Link-Error": failure.kind.value})

