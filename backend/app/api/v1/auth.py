"""Authentication routes"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from app.api.deps import get_auth_service, get_bearer_token, get_client_ip, get_db, get_identity
from app.core.exceptions import (
    CurrentPasswordIncorrectError,
    TokenNotFoundError,
    exception_for,
    unwrap,
)
from app.core.permissions import Identity, requires
from app.core.results import ErrorKind
from app.schemas.response import APIResponse
from app.schemas.user import (
    ChangePasswordRequest,
    CheckPermissionRequest,
    CheckPermissionResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    PermissionsResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserInfo,
    ValidateTokenResponse,
)
from app.services.auth_service import AuthService, AuthTokens

router = APIRouter()


def _token_response(tokens: AuthTokens) -> TokenResponse:
    user = tokens.user
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=tokens.expires_at,
        user=UserInfo(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            permissions=tokens.permissions,
        ),
    )


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Login endpoint - authenticate by username or email and return a token pair

    Args:
        credentials: Identifier and password
        db: Database session

    Returns:
        Access token, refresh token and expiry
    """
    result = auth.login(db, credentials.identifier, credentials.password)
    return _token_response(unwrap(result))


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Create an account with the default role and sign it in

    Returns:
        Access token, refresh token and expiry
    """
    result = auth.register(db, payload.username, payload.email, payload.password)
    return _token_response(unwrap(result))


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    req: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    client: str = Depends(get_client_ip),
):
    """
    Exchange a refresh token for a new pair; the presented token is consumed

    Returns:
        New access token, refresh token and expiry
    """
    result = auth.refresh(db, req.refresh_token, revoked_by=client)
    return _token_response(unwrap(result))


@router.post("/logout", response_model=APIResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    client: str = Depends(get_client_ip),
):
    """
    Logout endpoint - blacklist the bearer token and revoke refresh tokens

    Returns:
        Success message
    """
    outcome = unwrap(
        auth.logout(
            db,
            token,
            refresh_token=body.refresh_token if body else None,
            revoked_by=client,
        )
    )
    return APIResponse(
        message="Logged out successfully",
        data={"refreshTokensRevoked": outcome.refresh_tokens_revoked},
    )


@router.post("/change-password", response_model=APIResponse)
@requires()
def change_password(
    payload: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Change the caller's password; every other session is signed out

    Returns:
        Success message
    """
    result = auth.change_password(db, identity.user_id, payload.old_password, payload.new_password)
    if result.error is ErrorKind.INVALID_CREDENTIALS:
        raise CurrentPasswordIncorrectError()
    unwrap(result)
    return APIResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=APIResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Request a password reset; the answer is the same whether or not the email is known
    """
    auth.forgot_password(db, payload.email)
    return APIResponse(message="If the email is registered, a password reset link has been sent")


@router.post("/reset-password", response_model=APIResponse)
def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    client: str = Depends(get_client_ip),
):
    """
    Set a new password with a single-use reset token
    """
    unwrap(auth.reset_password(db, payload.token, payload.new_password, used_by=client))
    return APIResponse(message="Password has been reset successfully")


@router.post("/validate", response_model=ValidateTokenResponse)
def validate_token(
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Report whether the bearer token is currently valid

    The authentication stage lets this path through without rejecting
    bad tokens, so the answer is always a 200 with `valid` set.
    """
    if not token:
        raise TokenNotFoundError()
    return ValidateTokenResponse(valid=auth.validate_token(db, token).ok)


@router.get("/me", response_model=UserInfo)
@requires()
def get_current_user_info(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Get current user information with effective permissions
    """
    view = unwrap(auth.get_user_info(db, identity.user_id))
    user = view.user
    return UserInfo(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        permissions=view.permissions,
    )


@router.get("/permissions", response_model=PermissionsResponse)
@requires()
def get_permissions(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    permissions = unwrap(auth.get_permissions(db, identity.user_id))
    return PermissionsResponse(user_id=identity.user_id, role=identity.role, permissions=permissions)


@router.post("/check-permission", response_model=CheckPermissionResponse)
@requires()
def check_permission(
    payload: CheckPermissionRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    result = auth.has_permission(db, identity.user_id, payload.permission)
    if not result.ok:
        raise exception_for(result)
    return CheckPermissionResponse(permission=payload.permission, has_permission=result.value)
