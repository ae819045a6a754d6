"""Single-use, time-boxed password reset tokens."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.core.clock import SystemClock, system_clock
from app.core.security import generate_opaque_token, hash_token
from app.models.security import PasswordResetToken


class PasswordResetLedger:
    """Issue and consume reset tokens. Callers commit."""

    def __init__(self, app_settings: Optional[Settings] = None, clock: Optional[SystemClock] = None) -> None:
        self.settings = app_settings or settings
        self.clock = clock or system_clock

    def issue(self, db: Session, user_id: int) -> Tuple[str, PasswordResetToken]:
        """
        Create a reset token for a user

        Returns:
            Tuple of (plaintext token, flushed record); only the digest is stored
        """
        now = self.clock.now()
        plaintext = generate_opaque_token(32)
        record = PasswordResetToken(
            user_id=user_id,
            token_hash=hash_token(plaintext),
            expires_at=now + timedelta(minutes=self.settings.PASSWORD_RESET_EXPIRE_MINUTES),
            used=False,
            created_at=now,
        )
        db.add(record)
        db.flush()
        return plaintext, record

    def consume(self, db: Session, plaintext: str, used_by: Optional[str] = None) -> Optional[int]:
        """
        Mark a token used if it is known, unused and unexpired.

        Returns:
            The owning user id, or None for any of the three failure cases
        """
        if not plaintext:
            return None
        now = self.clock.now()
        digest = hash_token(plaintext)
        result = db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.token_hash == digest,
                PasswordResetToken.used == False,  # noqa: E712
                PasswordResetToken.expires_at > now,
            )
            .values(used=True, used_at=now, used_by=used_by)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return (
            db.query(PasswordResetToken.user_id)
            .filter(PasswordResetToken.token_hash == digest)
            .scalar()
        )

    def invalidate_outstanding(self, db: Session, user_id: int, used_by: Optional[str] = None) -> int:
        """Burn every unused token of a user once their password has changed."""
        now = self.clock.now()
        result = db.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.user_id == user_id, PasswordResetToken.used == False)  # noqa: E712
            .values(used=True, used_at=now, used_by=used_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, db: Session) -> int:
        result = db.execute(
            delete(PasswordResetToken)
            .where(PasswordResetToken.expires_at <= self.clock.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
