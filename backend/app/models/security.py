"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.core.database import Base


class RefreshToken(Base):
    """Refresh token record for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    family_id = Column(String(64), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    replaced_by_id = Column(Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(String(64), nullable=True)
    revoke_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_user_family", "user_id", "family_id"),
        Index("idx_refresh_tokens_user_revoked", "user_id", "revoked"),
    )


class BlacklistedToken(Base):
    """Revoked access-token identifier; prunable once expires_at passes."""

    __tablename__ = "blacklisted_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    reason = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)


class PasswordResetToken(Base):
    """Single-use, time-boxed password reset secret."""

    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    used_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="reset_tokens")

    __table_args__ = (
        Index("idx_reset_tokens_user_used", "user_id", "used"),
    )
