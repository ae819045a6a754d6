"""Explicit outcome values returned by the auth services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure reasons an auth operation can report."""

    # AuthenticationError
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"

    # TokenError
    MALFORMED = "MALFORMED"
    EXPIRED = "EXPIRED"
    BLACKLISTED = "BLACKLISTED"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    INVALID_OR_EXPIRED_TOKEN = "INVALID_OR_EXPIRED_TOKEN"

    # RateLimitError
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # ValidationError
    VALIDATION = "VALIDATION"
    USERNAME_EXISTS = "USERNAME_EXISTS"
    EMAIL_EXISTS = "EMAIL_EXISTS"
    REGISTRATION_REJECTED = "REGISTRATION_REJECTED"

    USER_NOT_FOUND = "USER_NOT_FOUND"

    @property
    def is_token_error(self) -> bool:
        return self in (ErrorKind.MALFORMED, ErrorKind.EXPIRED, ErrorKind.BLACKLISTED)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or exactly one error kind."""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, **details: Any) -> "Result[T]":
        return cls(error=error, details=details)
