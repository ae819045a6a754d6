"""User service - credential store lookups and account state"""

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from app.config import Settings
from app.core.permissions import UserRole
from app.core.security import get_password_hash
from app.models.user import User

logger = logging.getLogger(__name__)


class UserService:
    """Service for user records"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        """Get user by username (case-insensitive)"""
        return db.query(User).filter(func.lower(User.username) == username.strip().lower()).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    @staticmethod
    def get_user_by_identifier(db: Session, identifier: str) -> Optional[User]:
        """
        Resolve a login identifier

        Args:
            db: Database session
            identifier: Username or email

        Returns:
            Matching user or None
        """
        value = identifier.strip().lower()
        if not value:
            return None
        return (
            db.query(User)
            .filter(or_(func.lower(User.username) == value, func.lower(User.email) == value))
            .first()
        )

    @staticmethod
    def create_user(
        db: Session,
        *,
        username: str,
        email: str,
        password_hash: str,
        role: str,
        created_at: datetime,
    ) -> User:
        """
        Add a user to the session and flush so the id is assigned

        The caller commits, which keeps registration and token issuance in one transaction.
        """
        user = User(
            username=username,
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            is_active=True,
            failed_login_attempts=0,
            created_at=created_at,
            password_changed_at=created_at,
        )
        db.add(user)
        db.flush()
        logger.info(f"Created user: {user.username} (role: {user.role})")
        return user

    @staticmethod
    def get_all_users(
        db: Session,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[User]:
        """
        Get users, optionally filtered

        Args:
            db: Database session
            role: Optional role filter
            is_active: Optional status filter
            skip: Offset
            limit: Page size

        Returns:
            List of users
        """
        query = db.query(User)

        if role:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active == is_active)

        return query.order_by(User.id.asc()).offset(skip).limit(limit).all()

    @staticmethod
    def set_active(db: Session, user: User, is_active: bool) -> User:
        user.is_active = is_active
        if is_active:
            user.failed_login_attempts = 0
            user.locked_until = None
        db.flush()
        return user

    @staticmethod
    def ensure_admin(db: Session, app_settings: Settings, now: datetime) -> Optional[User]:
        """
        Create the bootstrap admin if no user holds its username

        Returns:
            The created admin, or None if it already existed
        """
        if UserService.get_user_by_username(db, app_settings.ADMIN_USERNAME):
            return None
        admin = UserService.create_user(
            db,
            username=app_settings.ADMIN_USERNAME,
            email=app_settings.ADMIN_EMAIL,
            password_hash=get_password_hash(app_settings.ADMIN_PASSWORD, app_settings.BCRYPT_ROUNDS),
            role=UserRole.ADMIN.value,
            created_at=now,
        )
        db.commit()
        logger.info(f"Created admin user: {admin.username}")
        return admin


# Singleton instance
user_service = UserService()
