"""Audit log response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: int
    request_id: Optional[str]
    user_id: Optional[int]
    user_role: Optional[str]
    method: str
    path: str
    query_string: Optional[str]
    status_code: int
    duration_ms: float
    response_size: Optional[int]
    ip_address: Optional[str]
    exception: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
