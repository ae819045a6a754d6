"""Database models"""

from app.models.user import User
from app.models.security import RefreshToken, BlacklistedToken, PasswordResetToken
from app.models.audit import AuditLog

__all__ = ["User", "RefreshToken", "BlacklistedToken", "PasswordResetToken", "AuditLog"]
