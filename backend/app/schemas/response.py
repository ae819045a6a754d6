"""Envelope and health response schemas"""

from pydantic import BaseModel
from typing import Optional, Any, Dict


class APIResponse(BaseModel):
    """Success envelope for endpoints that return a message rather than a resource"""
    success: bool = True
    message: str
    data: Optional[Any] = None


class DatabaseReadiness(BaseModel):
    ok: bool
    error: Optional[str] = None


class ReadinessReport(BaseModel):
    database: DatabaseReadiness
    token_janitor: Dict[str, Any]
    rate_limit_backend: str


class HealthResponse(BaseModel):
    """Liveness plus per-dependency readiness"""
    status: str
    version: str
    timestamp: str
    readiness: ReadinessReport
