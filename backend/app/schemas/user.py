"""User and authentication schemas"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


class CamelModel(BaseModel):
    """Wire format is camelCase; Python attributes stay snake_case."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class LoginRequest(CamelModel):
    """Login with username or email"""
    identifier: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class RegisterRequest(CamelModel):
    """Self-service registration"""
    username: str = Field(..., min_length=3, max_length=50, pattern=r'^[a-zA-Z0-9_.-]+$')
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator('username')
    @classmethod
    def normalize_username(cls, v):
        return v.strip()

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.lower()


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.lower()


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class CheckPermissionRequest(CamelModel):
    permission: str = Field(..., min_length=1, max_length=100)


class UserStatusUpdate(CamelModel):
    is_active: bool


class UserResponse(CamelModel):
    """User profile as exposed by the API"""
    id: int
    username: str
    email: str
    role: str
    is_active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    locked_until: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class UserInfo(CamelModel):
    """Caller identity plus effective permissions"""
    id: int
    username: str
    email: str
    role: str
    permissions: List[str] = []


class TokenResponse(CamelModel):
    """Access/refresh token pair"""
    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "Bearer"
    user: UserInfo


class ValidateTokenResponse(CamelModel):
    valid: bool


class PermissionsResponse(CamelModel):
    user_id: int
    role: str
    permissions: List[str]


class CheckPermissionResponse(CamelModel):
    permission: str
    has_permission: bool
