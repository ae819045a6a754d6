"""Revoked access-token identifiers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import SystemClock, system_clock
from app.models.security import BlacklistedToken

logger = logging.getLogger(__name__)


class BlacklistService:
    """Durable jti blacklist whose entries expire with the token they revoke."""

    def __init__(self, clock: Optional[SystemClock] = None) -> None:
        self.clock = clock or system_clock

    def is_blacklisted(self, db: Session, jti: str) -> bool:
        now = self.clock.now()
        return (
            db.query(BlacklistedToken.id)
            .filter(BlacklistedToken.jti == jti, BlacklistedToken.expires_at > now)
            .first()
            is not None
        )

    def add(
        self,
        db: Session,
        jti: str,
        expires_at: datetime,
        *,
        user_id: Optional[int] = None,
        reason: str = "logout",
    ) -> bool:
        """
        Blacklist a jti until expires_at and commit

        Args:
            db: Database session
            jti: Token identifier
            expires_at: When the token would have expired anyway
            user_id: Token subject, if known
            reason: Why it was revoked

        Returns:
            bool: False when the entry already existed or the token is already past expiry
        """
        if expires_at <= self.clock.now():
            return False
        if db.query(BlacklistedToken.id).filter(BlacklistedToken.jti == jti).first() is not None:
            return False

        db.add(
            BlacklistedToken(
                jti=jti,
                user_id=user_id,
                expires_at=expires_at,
                reason=reason,
                created_at=self.clock.now(),
            )
        )
        try:
            db.commit()
        except IntegrityError:
            # Concurrent logout with the same token got there first
            db.rollback()
            return False
        return True

    def purge_expired(self, db: Session) -> int:
        result = db.execute(
            delete(BlacklistedToken)
            .where(BlacklistedToken.expires_at <= self.clock.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
