"""Custom exception classes for the application"""

from typing import Optional, Dict, Any

from app.core.results import ErrorKind, Result


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        code: str = "INTERNAL_ERROR",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.code = code
        self.headers = headers or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(
        self,
        message: str = "Authentication failed",
        code: str = "UNAUTHORIZED",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            status_code=401,
            details=details,
            code=code,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthenticationRequiredError(AuthenticationError):
    """Endpoint needs a caller identity and the request carried none"""
    def __init__(self):
        super().__init__("Authentication required")


class InvalidCredentialsError(AuthenticationError):
    """Invalid username or password"""
    def __init__(self):
        super().__init__("Invalid username or password", code=ErrorKind.INVALID_CREDENTIALS.value)


class AccountInactiveError(AuthenticationError):
    """Account has been disabled"""
    def __init__(self):
        super().__init__("Account is disabled", code=ErrorKind.ACCOUNT_INACTIVE.value)


class AccountLockedError(AuthenticationError):
    """Account is locked due to failed login attempts"""
    def __init__(self, locked_until: Optional[str] = None):
        super().__init__(
            "Account is temporarily locked",
            code=ErrorKind.ACCOUNT_LOCKED.value,
            details={"locked_until": locked_until} if locked_until else None,
        )


class TokenInvalidError(AuthenticationError):
    """Access token is forged, expired or revoked (reported identically)"""
    def __init__(self):
        super().__init__("Invalid or expired token", code="INVALID_TOKEN")


class InvalidRefreshTokenError(AuthenticationError):
    """Refresh token is unknown, expired or already used"""
    def __init__(self):
        super().__init__("Invalid refresh token", code=ErrorKind.INVALID_REFRESH_TOKEN.value)


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403, code="FORBIDDEN")


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404, code="NOT_FOUND")


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        reason: Optional[str] = None,
        code: str = ErrorKind.VALIDATION.value,
        details: Optional[Dict[str, Any]] = None,
    ):
        if details is None and (field or reason):
            details = {"field": field, "reason": reason}
        super().__init__(message, status_code=400, details=details, code=code)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""
    def __init__(self, message: str, code: str = "BAD_REQUEST"):
        super().__init__(message, status_code=400, code=code)


class TokenNotFoundError(BusinessLogicError):
    """No bearer token was supplied"""
    def __init__(self):
        super().__init__("Token not found", code=ErrorKind.TOKEN_NOT_FOUND.value)


class InvalidResetTokenError(BusinessLogicError):
    """Password reset token is unknown, expired or used"""
    def __init__(self):
        super().__init__("Invalid or expired reset token", code=ErrorKind.INVALID_OR_EXPIRED_TOKEN.value)


class CurrentPasswordIncorrectError(BusinessLogicError):
    """Old password did not match on change-password"""
    def __init__(self):
        super().__init__("Current password is incorrect", code=ErrorKind.INVALID_CREDENTIALS.value)


# System Errors
class DatabaseError(BaseAPIException):
    """Database operation failed"""
    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500, code="DATABASE_ERROR")


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(
        self,
        retry_after: int,
        message: str = "Rate limit exceeded. Please try again later.",
    ):
        super().__init__(
            message,
            status_code=429,
            details={"retry_after": retry_after},
            code=ErrorKind.QUOTA_EXCEEDED.value,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


def exception_for(result: Result) -> BaseAPIException:
    """
    Translate a failed service result into the API exception raised at the edge.

    Args:
        result: Failed result

    Returns:
        Exception carrying the HTTP status and a deliberately generic message
    """
    kind = result.error
    if kind is None:
        raise ValueError("exception_for() needs a failed result")

    if kind.is_token_error:
        return TokenInvalidError()
    if kind is ErrorKind.INVALID_CREDENTIALS:
        return InvalidCredentialsError()
    if kind is ErrorKind.ACCOUNT_INACTIVE:
        return AccountInactiveError()
    if kind is ErrorKind.ACCOUNT_LOCKED:
        return AccountLockedError(result.details.get("locked_until"))
    if kind is ErrorKind.INVALID_REFRESH_TOKEN:
        return InvalidRefreshTokenError()
    if kind is ErrorKind.TOKEN_NOT_FOUND:
        return TokenNotFoundError()
    if kind is ErrorKind.INVALID_OR_EXPIRED_TOKEN:
        return InvalidResetTokenError()
    if kind is ErrorKind.QUOTA_EXCEEDED:
        return RateLimitExceededError(int(result.details.get("retry_after", 1)))
    if kind is ErrorKind.USER_NOT_FOUND:
        return AuthenticationError("User not found or inactive")
    if kind is ErrorKind.REGISTRATION_REJECTED:
        return ValidationError("Registration failed", code=kind.value)
    if kind in (ErrorKind.USERNAME_EXISTS, ErrorKind.EMAIL_EXISTS):
        return ValidationError(
            "Registration failed",
            field=result.details.get("field"),
            reason=kind.value,
            code=kind.value,
        )
    if kind is ErrorKind.VALIDATION:
        return ValidationError(
            result.details.get("message", "Validation failed"),
            field=result.details.get("field"),
            reason=result.details.get("reason"),
            code=result.details.get("code", ErrorKind.VALIDATION.value),
        )
    return BaseAPIException("Request failed")


def unwrap(result: Result):
    """Return the value of a successful result or raise its API exception."""
    if not result.ok:
        raise exception_for(result)
    return result.value
