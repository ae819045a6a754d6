"""Audit log model for request metadata."""

from sqlalchemy import Column, Integer, String, DateTime, Float, Text, Index

from app.core.database import Base


class AuditLog(Base):
    """One row per request that reached the audit stage."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), nullable=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    user_role = Column(String(20), nullable=True)
    method = Column(String(10), nullable=False)
    path = Column(String(512), nullable=False)
    query_string = Column(String(1024), nullable=True)
    request_body = Column(Text, nullable=True)
    status_code = Column(Integer, nullable=False)
    duration_ms = Column(Float, nullable=False)
    response_size = Column(Integer, nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)
    exception = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_audit_logs_created_at", "created_at"),
        Index("idx_audit_logs_path", "path"),
    )
