"""Authentication orchestration.

Every operation returns a `Result`; expected failures are values, never
exceptions. Route handlers turn failed results into HTTP errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.core.clock import SystemClock, from_timestamp, system_clock
from app.core.metrics import REFRESH_REUSE_DETECTED, TOKENS_PURGED
from app.core.permissions import has_permission, permissions_for
from app.core.results import ErrorKind, Result
from app.core.security import generate_opaque_token, get_password_hash, verify_password
from app.models.user import User
from app.services.blacklist_service import BlacklistService
from app.services.notification_service import LoggingNotifier, PasswordResetNotifier
from app.services.password_reset_service import PasswordResetLedger
from app.services.refresh_ledger import (
    REASON_ACCOUNT_DISABLED,
    REASON_LOGOUT,
    REASON_PASSWORD_CHANGED,
    REASON_PASSWORD_RESET,
    REASON_REUSE_DETECTED,
    REASON_ROTATED,
    RefreshLedger,
)
from app.services.token_service import AccessTokenClaims, TokenService
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

# bcrypt silently ignores input past 72 bytes, and bcrypt>=4.1 refuses it outright
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: User
    permissions: List[str]


@dataclass(frozen=True)
class AccountView:
    user: User
    permissions: List[str]


@dataclass(frozen=True)
class LogoutOutcome:
    blacklisted: bool
    refresh_tokens_revoked: int


class AuthService:
    """Login, registration, rotation, logout and password lifecycle."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        clock: Optional[SystemClock] = None,
        token_service: Optional[TokenService] = None,
        reset_ledger: Optional[PasswordResetLedger] = None,
        notifier: Optional[PasswordResetNotifier] = None,
    ) -> None:
        self.settings = app_settings or settings
        self.clock = clock or system_clock
        self.tokens = token_service or TokenService(self.settings, self.clock)
        self.refresh_ledger: RefreshLedger = self.tokens.refresh_ledger
        self.blacklist: BlacklistService = self.tokens.blacklist
        self.reset_ledger = reset_ledger or PasswordResetLedger(self.settings, self.clock)
        self.notifier = notifier or LoggingNotifier(debug=self.settings.DEBUG)
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------ helpers

    def _hash(self, password: str) -> str:
        return get_password_hash(password, self.settings.BCRYPT_ROUNDS)

    def _burn_hash_time(self, password: str) -> None:
        """Spend one bcrypt comparison so unknown users cost the same as known ones."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hash(generate_opaque_token(16))
        verify_password(password, self._dummy_hash)

    def _password_problem(self, password: str, field: str) -> Optional[Result]:
        if len(password) < self.settings.PASSWORD_MIN_LENGTH:
            return Result.failure(
                ErrorKind.VALIDATION,
                field=field,
                reason=f"must be at least {self.settings.PASSWORD_MIN_LENGTH} characters",
                code="PASSWORD_TOO_SHORT",
                message="Password does not meet requirements",
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return Result.failure(
                ErrorKind.VALIDATION,
                field=field,
                reason=f"must be at most {MAX_PASSWORD_BYTES} bytes",
                code="PASSWORD_TOO_LONG",
                message="Password does not meet requirements",
            )
        return None

    def _issue_pair(self, db: Session, user: User, family_id: Optional[str] = None) -> AuthTokens:
        access = self.tokens.issue_access_token(user)
        refresh_plaintext, _ = self.tokens.issue_refresh_token(db, user, family_id=family_id)
        return AuthTokens(
            access_token=access.token,
            refresh_token=refresh_plaintext,
            expires_at=access.claims.expires_at,
            user=user,
            permissions=list(access.claims.permissions),
        )

    def _registration_conflict(self, db: Session, username: str, email: str) -> Optional[Result]:
        if user_service.get_user_by_username(db, username):
            kind, field = ErrorKind.USERNAME_EXISTS, "username"
        elif user_service.get_user_by_email(db, email):
            kind, field = ErrorKind.EMAIL_EXISTS, "email"
        else:
            return None
        if self.settings.REGISTRATION_CONCEALS_CONFLICTS:
            return Result.failure(ErrorKind.REGISTRATION_REJECTED)
        return Result.failure(kind, field=field)

    # ------------------------------------------------------------- operations

    def login(self, db: Session, identifier: str, password: str) -> Result[AuthTokens]:
        """
        Authenticate by username or email and issue a token pair

        Args:
            db: Database session
            identifier: Username or email
            password: Plain text password

        Returns:
            Result with AuthTokens, or INVALID_CREDENTIALS / ACCOUNT_LOCKED / ACCOUNT_INACTIVE
        """
        now = self.clock.now()
        user = user_service.get_user_by_identifier(db, identifier)
        if user is None:
            self._burn_hash_time(password)
            logger.warning("Failed login attempt for unknown identifier")
            return Result.failure(ErrorKind.INVALID_CREDENTIALS)

        if user.locked_until and user.locked_until > now:
            return Result.failure(ErrorKind.ACCOUNT_LOCKED, locked_until=user.locked_until.isoformat())

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            if user.failed_login_attempts >= self.settings.MAX_FAILED_LOGIN_ATTEMPTS:
                user.locked_until = now + timedelta(minutes=self.settings.LOCKOUT_DURATION_MINUTES)
                user.failed_login_attempts = 0
                logger.warning(f"Account locked for user id {user.id}")
            db.commit()
            logger.warning(f"Failed login attempt for user id {user.id}")
            return Result.failure(ErrorKind.INVALID_CREDENTIALS)

        if not user.is_active:
            return Result.failure(ErrorKind.ACCOUNT_INACTIVE)

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = now
        tokens = self._issue_pair(db, user)
        db.commit()
        logger.info(f"User authenticated: {user.username}")
        return Result.success(tokens)

    def register(self, db: Session, username: str, email: str, password: str) -> Result[AuthTokens]:
        """
        Create an account with the default role and log it in

        Returns:
            Result with AuthTokens, or VALIDATION / USERNAME_EXISTS / EMAIL_EXISTS
            (REGISTRATION_REJECTED when conflicts are concealed)
        """
        problem = self._password_problem(password, "password")
        if problem:
            return problem

        conflict = self._registration_conflict(db, username, email)
        if conflict:
            return conflict

        user = user_service.create_user(
            db,
            username=username,
            email=email,
            password_hash=self._hash(password),
            role=self.settings.DEFAULT_USER_ROLE,
            created_at=self.clock.now(),
        )
        tokens = self._issue_pair(db, user)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name or email
            db.rollback()
            return self._registration_conflict(db, username, email) or Result.failure(
                ErrorKind.USERNAME_EXISTS, field="username"
            )
        return Result.success(tokens)

    def refresh(self, db: Session, presented_token: str, revoked_by: Optional[str] = None) -> Result[AuthTokens]:
        """
        Rotate a refresh token into a new access/refresh pair

        The presented record is revoked by a conditional update; only the
        caller that wins it gets new tokens.

        Returns:
            Result with AuthTokens or INVALID_REFRESH_TOKEN
        """
        now = self.clock.now()
        record = self.refresh_ledger.find(db, presented_token)
        if record is None:
            return Result.failure(ErrorKind.INVALID_REFRESH_TOKEN)

        if record.revoked:
            self._on_revoked_token_presented(db, record, now)
            return Result.failure(ErrorKind.INVALID_REFRESH_TOKEN)

        if record.expires_at <= now:
            return Result.failure(ErrorKind.INVALID_REFRESH_TOKEN)

        user = user_service.get_user_by_id(db, record.user_id)
        if user is None or not user.is_active:
            return Result.failure(ErrorKind.INVALID_REFRESH_TOKEN)

        if not self.refresh_ledger.consume(db, record.id, reason=REASON_ROTATED, revoked_by=revoked_by):
            db.rollback()
            return Result.failure(ErrorKind.INVALID_REFRESH_TOKEN)

        access = self.tokens.issue_access_token(user)
        refresh_plaintext, replacement = self.tokens.issue_refresh_token(db, user, family_id=record.family_id)
        self.refresh_ledger.mark_replaced(db, record.id, replacement.id)
        db.commit()
        return Result.success(
            AuthTokens(
                access_token=access.token,
                refresh_token=refresh_plaintext,
                expires_at=access.claims.expires_at,
                user=user,
                permissions=list(access.claims.permissions),
            )
        )

    def _on_revoked_token_presented(self, db: Session, record, now: datetime) -> None:
        if not self.settings.REFRESH_REUSE_REVOKES_FAMILY or record.revoke_reason != REASON_ROTATED:
            return
        grace = timedelta(seconds=self.settings.REFRESH_REUSE_GRACE_SECONDS)
        if record.revoked_at is not None and now - record.revoked_at <= grace:
            # Duplicate presentation of a just-rotated token, not theft
            return
        revoked = self.refresh_ledger.revoke_family(db, record.family_id, reason=REASON_REUSE_DETECTED)
        db.commit()
        REFRESH_REUSE_DETECTED.inc()
        logger.warning(
            "Rotated refresh token reused for user %s; revoked %d tokens in family %s",
            record.user_id,
            revoked,
            record.family_id,
        )

    def logout(
        self,
        db: Session,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        revoked_by: Optional[str] = None,
    ) -> Result[LogoutOutcome]:
        """
        Blacklist an access token until its own expiry and revoke refresh tokens

        Only parsing is required for the blacklist entry; refresh tokens are
        revoked for the subject of a token whose signature checks out.

        Returns:
            Result with LogoutOutcome, or TOKEN_NOT_FOUND / MALFORMED
        """
        if not access_token:
            return Result.failure(ErrorKind.TOKEN_NOT_FOUND)

        claims = self.tokens.read_claims_unverified(access_token)
        if not claims or not claims.get("jti") or claims.get("exp") is None:
            return Result.failure(ErrorKind.MALFORMED)
        try:
            expires_at = from_timestamp(float(claims["exp"]))
        except (TypeError, ValueError, OverflowError, OSError):
            return Result.failure(ErrorKind.MALFORMED)
        # No token this service issues outlives a fresh one
        latest = self.clock.now() + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        expires_at = min(expires_at, latest)

        verified = self.tokens.verify(access_token)
        user_id = verified.value.user_id if verified.ok else None

        blacklisted = self.blacklist.add(
            db,
            str(claims["jti"]),
            expires_at + self.tokens.skew,
            user_id=user_id,
            reason=REASON_LOGOUT,
        )

        revoked = 0
        if user_id is not None:
            if refresh_token:
                revoked += int(
                    self.refresh_ledger.revoke(
                        db, refresh_token, reason=REASON_LOGOUT, revoked_by=revoked_by, user_id=user_id
                    )
                )
            if self.settings.LOGOUT_REVOKES_REFRESH_TOKENS:
                revoked += self.refresh_ledger.revoke_all_for_user(
                    db, user_id, reason=REASON_LOGOUT, revoked_by=revoked_by
                )
            db.commit()
        return Result.success(LogoutOutcome(blacklisted=blacklisted, refresh_tokens_revoked=revoked))

    def revoke_all_for_user(
        self, db: Session, user_id: int, reason: str, revoked_by: Optional[str] = None
    ) -> Result[int]:
        """Revoke every outstanding refresh token of a user; returns how many were active."""
        count = self.refresh_ledger.revoke_all_for_user(db, user_id, reason=reason, revoked_by=revoked_by)
        db.commit()
        logger.info(f"Revoked {count} refresh tokens for user id {user_id} ({reason})")
        return Result.success(count)

    def change_password(self, db: Session, user_id: int, old_password: str, new_password: str) -> Result[None]:
        """
        Replace a password after verifying the current one

        Every refresh token of the user is revoked on success; nothing is
        written when the old password is wrong.

        Returns:
            Result, or USER_NOT_FOUND / INVALID_CREDENTIALS / VALIDATION
        """
        user = user_service.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            return Result.failure(ErrorKind.USER_NOT_FOUND)

        if not verify_password(old_password, user.password_hash):
            return Result.failure(ErrorKind.INVALID_CREDENTIALS)

        problem = self._password_problem(new_password, "newPassword")
        if problem:
            return problem

        user.password_hash = self._hash(new_password)
        user.password_changed_at = self.clock.now()
        self.refresh_ledger.revoke_all_for_user(
            db, user.id, reason=REASON_PASSWORD_CHANGED, revoked_by=f"user:{user.id}"
        )
        self.reset_ledger.invalidate_outstanding(db, user.id, used_by="password_changed")
        db.commit()
        logger.info(f"Password changed for user id {user.id}")
        return Result.success()

    def forgot_password(self, db: Session, email: str) -> Result[None]:
        """
        Issue a reset token when the email belongs to an active account

        Always succeeds, whether or not the account exists.
        """
        user = user_service.get_user_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return Result.success()

        plaintext, record = self.reset_ledger.issue(db, user.id)
        db.commit()
        try:
            self.notifier.send_password_reset(user, plaintext, record.expires_at)
        except Exception:
            logger.exception(f"Password reset notification failed for user id {user.id}")
        return Result.success()

    def reset_password(
        self, db: Session, token: str, new_password: str, used_by: Optional[str] = None
    ) -> Result[None]:
        """
        Consume a reset token and set a new password

        Unknown, expired and already used tokens are reported identically.

        Returns:
            Result, or VALIDATION / INVALID_OR_EXPIRED_TOKEN
        """
        problem = self._password_problem(new_password, "newPassword")
        if problem:
            return problem

        user_id = self.reset_ledger.consume(db, token, used_by=used_by)
        user = user_service.get_user_by_id(db, user_id) if user_id is not None else None
        if user is None:
            db.rollback()
            return Result.failure(ErrorKind.INVALID_OR_EXPIRED_TOKEN)

        user.password_hash = self._hash(new_password)
        user.password_changed_at = self.clock.now()
        user.failed_login_attempts = 0
        user.locked_until = None
        self.refresh_ledger.revoke_all_for_user(
            db, user.id, reason=REASON_PASSWORD_RESET, revoked_by=used_by
        )
        self.reset_ledger.invalidate_outstanding(db, user.id, used_by="superseded")
        db.commit()
        logger.info(f"Password reset completed for user id {user.id}")
        return Result.success()

    def validate_token(self, db: Session, token: Optional[str]) -> Result[AccessTokenClaims]:
        if not token:
            return Result.failure(ErrorKind.TOKEN_NOT_FOUND)
        return self.tokens.validate_access_token(db, token)

    def get_user_info(self, db: Session, user_id: int) -> Result[AccountView]:
        user = user_service.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            return Result.failure(ErrorKind.USER_NOT_FOUND)
        return Result.success(AccountView(user=user, permissions=permissions_for(user)))

    def get_permissions(self, db: Session, user_id: int) -> Result[List[str]]:
        view = self.get_user_info(db, user_id)
        if not view.ok:
            return Result.failure(view.error)
        return Result.success(view.value.permissions)

    def has_permission(self, db: Session, user_id: int, permission: str) -> Result[bool]:
        granted = self.get_permissions(db, user_id)
        if not granted.ok:
            return Result.failure(granted.error)
        return Result.success(has_permission(granted.value, permission))

    def set_user_active(
        self, db: Session, user_id: int, is_active: bool, revoked_by: Optional[str] = None
    ) -> Result[User]:
        """Enable or disable an account; disabling also ends its sessions."""
        user = user_service.get_user_by_id(db, user_id)
        if user is None:
            return Result.failure(ErrorKind.USER_NOT_FOUND)
        user_service.set_active(db, user, is_active)
        if not is_active:
            self.refresh_ledger.revoke_all_for_user(
                db, user.id, reason=REASON_ACCOUNT_DISABLED, revoked_by=revoked_by
            )
        db.commit()
        logger.info(f"User id {user.id} {'activated' if is_active else 'deactivated'} by {revoked_by}")
        return Result.success(user)

    def purge_expired(self, db: Session) -> Dict[str, int]:
        """
        Delete token rows that can no longer affect any decision

        Returns:
            Rows removed per table
        """
        counts = {
            "blacklisted_tokens": self.blacklist.purge_expired(db),
            "password_reset_tokens": self.reset_ledger.purge_expired(db),
            "refresh_tokens": self.refresh_ledger.purge_expired(db),
        }
        db.commit()
        for table, count in counts.items():
            if count:
                TOKENS_PURGED.labels(table).inc(count)
        logger.info("Purged expired tokens: %s", counts)
        return counts
