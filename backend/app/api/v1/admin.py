"""Admin routes - audit trail and token maintenance"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from app.api.deps import get_auth_service, get_db
from app.core.permissions import requires
from app.schemas.audit import AuditLogResponse
from app.schemas.response import APIResponse
from app.services.audit_service import list_events
from app.services.auth_service import AuthService

router = APIRouter()


@router.get("/audit-logs", response_model=List[AuditLogResponse])
@requires(permissions=["audit:read"])
def get_audit_logs(
    user_id: Optional[int] = None,
    path_prefix: Optional[str] = None,
    status_code: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """
    Recent audit records, newest first

    Args:
        user_id: Only this caller
        path_prefix: Only paths under this prefix
        status_code: Only this response status
        limit: Maximum rows
        db: Database session

    Returns:
        Audit rows
    """
    events = list_events(db, user_id=user_id, path_prefix=path_prefix, status_code=status_code, limit=limit)
    return [AuditLogResponse.model_validate(event) for event in events]


@router.post("/maintenance/purge-expired-tokens", response_model=APIResponse)
@requires(permissions=["tokens:purge"])
def purge_expired_tokens(
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Delete blacklist, reset and refresh rows that have expired
    """
    counts = auth.purge_expired(db)
    return APIResponse(message="Expired tokens purged", data=counts)
