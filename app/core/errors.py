"""
Typed service results

Services never raise for expected outcomes (bad input, missing rights,
policy rejections, missing rows). They return a `Result` carrying either a
value or a `ServiceError` whose `kind` tells the caller how to branch.
Only unexpected failures (durable store errors) propagate as exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from fastapi import status
from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    POLICY = "policy"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class ValidationError(BaseModel):
    """Single field validation failure"""
    field: str
    message: str
    value: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Standard error body"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    validation_errors: List[ValidationError] = Field(default_factory=list)
    status_code: int


class ServiceError(BaseModel):
    kind: ErrorKind
    code: str = Field(..., description="Machine readable reason, e.g. rate_limited, user_muted")
    message: str = Field(..., description="Human readable reason")
    details: Dict[str, Any] = Field(default_factory=dict)
    validation_errors: List[ValidationError] = Field(default_factory=list)

    @property
    def status_code(self) -> int:
        if self.kind == ErrorKind.POLICY and self.code == "rate_limited":
            return status.HTTP_429_TOO_MANY_REQUESTS
        return _STATUS_BY_KIND[self.kind]

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.code,
            message=self.message,
            details=self.details or None,
            validation_errors=self.validation_errors,
            status_code=self.status_code,
        )


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.POLICY: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        code: str,
        message: str,
        validation_errors: Optional[List[ValidationError]] = None,
        **details
    ) -> "Result[T]":
        return cls(error=ServiceError(
            kind=kind,
            code=code,
            message=message,
            details=details,
            validation_errors=validation_errors or [],
        ))


# =============================================================================
# Shorthand constructors
# =============================================================================

def validation_failed(message: str, errors: List[ValidationError], code: str = "validation_error") -> Result:
    return Result.failure(ErrorKind.VALIDATION, code, message, validation_errors=errors)


def not_authorized(message: str, code: str = "authorization_error", **details) -> Result:
    return Result.failure(ErrorKind.AUTHORIZATION, code, message, **details)


def policy_rejected(code: str, message: str, **details) -> Result:
    return Result.failure(ErrorKind.POLICY, code, message, **details)


def not_found(resource: str, message: Optional[str] = None) -> Result:
    return Result.failure(
        ErrorKind.NOT_FOUND,
        f"{resource.lower().replace(' ', '_')}_not_found",
        message or f"{resource} not found",
        resource=resource,
    )


def conflict(code: str, message: str, **details) -> Result:
    return Result.failure(ErrorKind.CONFLICT, code, message, **details)


class ServiceException(Exception):
    """Raised at the HTTP boundary to turn a failed `Result` into an error response"""

    def __init__(self, error: ServiceError):
        super().__init__(error.message)
        self.error = error

    @property
    def status_code(self) -> int:
        return self.error.status_code

    def to_dict(self) -> Dict[str, Any]:
        return self.error.to_response().model_dump()


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    validation_errors: Optional[List[ValidationError]] = None,
) -> ErrorResponse:
    return ErrorResponse(
        error=error_code,
        message=message,
        details=details,
        validation_errors=validation_errors or [],
        status_code=status_code,
    )
