"""Durable refresh-token records with rotation/revocation bookkeeping.

Secrets are stored as SHA-256 digests. None of these methods commit; the
caller owns the transaction so a rotation lands as one unit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.core.clock import SystemClock, system_clock
from app.core.security import generate_opaque_token, hash_token
from app.models.security import RefreshToken

logger = logging.getLogger(__name__)

REASON_ROTATED = "rotated"
REASON_LOGOUT = "logout"
REASON_PASSWORD_CHANGED = "password_changed"
REASON_PASSWORD_RESET = "password_reset"
REASON_REUSE_DETECTED = "reuse_detected"
REASON_ADMIN_REVOKE = "admin_revoke"
REASON_ACCOUNT_DISABLED = "account_disabled"


class RefreshLedger:
    """Issue, look up and revoke refresh-token records."""

    def __init__(self, app_settings: Optional[Settings] = None, clock: Optional[SystemClock] = None) -> None:
        self.settings = app_settings or settings
        self.clock = clock or system_clock

    def issue(self, db: Session, user_id: int, family_id: Optional[str] = None) -> Tuple[str, RefreshToken]:
        """
        Create a refresh record

        Args:
            db: Database session
            user_id: Owner
            family_id: Rotation family; a new one is started when omitted

        Returns:
            Tuple of (plaintext token, flushed record)
        """
        now = self.clock.now()
        plaintext = generate_opaque_token(self.settings.REFRESH_TOKEN_BYTES)
        record = RefreshToken(
            user_id=user_id,
            family_id=family_id or uuid.uuid4().hex,
            token_hash=hash_token(plaintext),
            revoked=False,
            expires_at=now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS),
            created_at=now,
        )
        db.add(record)
        db.flush()
        return plaintext, record

    @staticmethod
    def find(db: Session, plaintext: str) -> Optional[RefreshToken]:
        if not plaintext:
            return None
        # Bulk updates in this session bypass the identity map
        return (
            db.query(RefreshToken)
            .populate_existing()
            .filter(RefreshToken.token_hash == hash_token(plaintext))
            .first()
        )

    def consume(self, db: Session, record_id: int, *, reason: str = REASON_ROTATED, revoked_by: Optional[str] = None) -> bool:
        """
        Revoke one record only if it is still active.

        A single conditional UPDATE; exactly one of any number of concurrent
        callers sees rowcount == 1.
        """
        now = self.clock.now()
        result = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == record_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .values(revoked=True, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_replaced(db: Session, record_id: int, replacement_id: int) -> None:
        db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id)
            .values(replaced_by_id=replacement_id)
            .execution_options(synchronize_session=False)
        )

    def revoke(
        self,
        db: Session,
        plaintext: str,
        *,
        reason: str,
        revoked_by: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> bool:
        """Revoke a token by value; with user_id set, only that user's token is touched."""
        record = self.find(db, plaintext)
        if record is None or (user_id is not None and record.user_id != user_id):
            return False
        now = self.clock.now()
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def revoke_family(self, db: Session, family_id: str, *, reason: str, revoked_by: Optional[str] = None) -> int:
        now = self.clock.now()
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def revoke_all_for_user(self, db: Session, user_id: int, *, reason: str, revoked_by: Optional[str] = None) -> int:
        now = self.clock.now()
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=now, revoked_by=revoked_by, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, db: Session) -> int:
        """Delete records past their expiry; revoked-but-unexpired ones stay for reuse detection."""
        now = self.clock.now()
        result = db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
