"""Pydantic schemas for API validation"""

from app.schemas.user import (
    LoginRequest,
    RegisterRequest,
    RefreshTokenRequest,
    LogoutRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    CheckPermissionRequest,
    UserStatusUpdate,
    UserResponse,
    UserInfo,
    TokenResponse,
    ValidateTokenResponse,
    PermissionsResponse,
    CheckPermissionResponse,
)
from app.schemas.response import APIResponse, HealthResponse
from app.schemas.audit import AuditLogResponse

__all__ = [
    "LoginRequest", "RegisterRequest", "RefreshTokenRequest", "LogoutRequest",
    "ChangePasswordRequest", "ForgotPasswordRequest", "ResetPasswordRequest",
    "CheckPermissionRequest", "UserStatusUpdate",
    "UserResponse", "UserInfo", "TokenResponse", "ValidateTokenResponse",
    "PermissionsResponse", "CheckPermissionResponse",
    "AuditLogResponse",
    "APIResponse", "HealthResponse",
]
