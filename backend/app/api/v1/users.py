"""User management routes"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from app.api.deps import get_auth_service, get_db, get_identity
from app.core.exceptions import ResourceNotFoundError, ValidationError, unwrap
from app.core.permissions import Identity, UserRole, requires
from app.core.results import ErrorKind
from app.schemas.response import APIResponse
from app.schemas.user import UserResponse, UserStatusUpdate
from app.services.auth_service import AuthService
from app.services.refresh_ledger import REASON_ADMIN_REVOKE
from app.services.user_service import user_service

router = APIRouter()


@router.get("/me", response_model=UserResponse)
@requires()
def get_my_profile(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Get current user profile

    Returns:
        User profile
    """
    return UserResponse.model_validate(unwrap(auth.get_user_info(db, identity.user_id)).user)


@router.get("/", response_model=List[UserResponse])
@requires(UserRole.ADMIN.value)
def get_all_users(
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """
    Get all users (admin only)

    Args:
        role: Optional role filter
        is_active: Optional status filter
        db: Database session

    Returns:
        List of users
    """
    users = user_service.get_all_users(db, role=role, is_active=is_active, skip=skip, limit=limit)
    return [UserResponse.model_validate(user) for user in users]


@router.post("/{user_id}/revoke-sessions", response_model=APIResponse)
@requires(UserRole.ADMIN.value)
def revoke_user_sessions(
    user_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Revoke every refresh token of a user (admin only)

    Access tokens already issued stay valid until they expire.
    """
    if user_service.get_user_by_id(db, user_id) is None:
        raise ResourceNotFoundError("User")
    count = unwrap(auth.revoke_all_for_user(db, user_id, REASON_ADMIN_REVOKE, revoked_by=f"user:{identity.user_id}"))
    return APIResponse(message="Sessions revoked", data={"revokedCount": count})


@router.patch("/{user_id}/status", response_model=UserResponse)
@requires(UserRole.ADMIN.value)
def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Activate or deactivate a user (admin only); deactivation ends their sessions
    """
    if user_id == identity.user_id and not payload.is_active:
        raise ValidationError("Cannot deactivate your own account", field="isActive", reason="self_deactivation")
    result = auth.set_user_active(db, user_id, payload.is_active, revoked_by=f"user:{identity.user_id}")
    if result.error is ErrorKind.USER_NOT_FOUND:
        raise ResourceNotFoundError("User")
    return UserResponse.model_validate(unwrap(result))
