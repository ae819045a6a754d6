"""Access token issuance and two-phase validation."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from jose import JWTError
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.core.clock import SystemClock, from_timestamp, system_clock, to_timestamp
from app.core.metrics import TOKEN_VALIDATION_FAILURES
from app.core.permissions import permissions_for
from app.core.results import ErrorKind, Result
from app.core.security import decode_jwt, encode_jwt, read_unverified_claims
from app.models.security import RefreshToken
from app.models.user import User
from app.services.blacklist_service import BlacklistService
from app.services.refresh_ledger import RefreshLedger

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("jti", "sub", "iat", "exp")


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified access-token claim set."""

    jti: str
    user_id: int
    username: Optional[str]
    role: str
    permissions: Tuple[str, ...]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    claims: AccessTokenClaims


class TokenService:
    """Mint signed access tokens and opaque refresh tokens; validate access tokens."""

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        clock: Optional[SystemClock] = None,
        refresh_ledger: Optional[RefreshLedger] = None,
        blacklist: Optional[BlacklistService] = None,
    ) -> None:
        self.settings = app_settings or settings
        self.clock = clock or system_clock
        self.refresh_ledger = refresh_ledger or RefreshLedger(self.settings, self.clock)
        self.blacklist = blacklist or BlacklistService(self.clock)

    @property
    def skew(self) -> timedelta:
        return timedelta(seconds=self.settings.TOKEN_CLOCK_SKEW_SECONDS)

    def issue_access_token(self, user: User) -> IssuedAccessToken:
        """
        Sign a fresh access token for a user

        Args:
            user: Token subject

        Returns:
            IssuedAccessToken: Encoded token with its claims
        """
        # Whole seconds so the datetime round-trips exactly through the JWT
        issued_at = self.clock.now().replace(microsecond=0)
        expires_at = issued_at + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        permissions = tuple(permissions_for(user))
        claims = AccessTokenClaims(
            jti=uuid.uuid4().hex,
            user_id=user.id,
            username=user.username,
            role=user.role,
            permissions=permissions,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        payload = {
            "iss": self.settings.JWT_ISSUER,
            "aud": self.settings.JWT_AUDIENCE,
            "typ": ACCESS_TOKEN_TYPE,
            "jti": claims.jti,
            "sub": str(user.id),
            "username": user.username,
            "role": user.role,
            "permissions": list(permissions),
            "iat": int(to_timestamp(issued_at)),
            "exp": int(to_timestamp(expires_at)),
        }
        token = encode_jwt(payload, self.settings.SECRET_KEY, self.settings.ALGORITHM)
        return IssuedAccessToken(token=token, claims=claims)

    def issue_refresh_token(
        self, db: Session, user: User, family_id: Optional[str] = None
    ) -> Tuple[str, RefreshToken]:
        """Persist a new refresh record; the plaintext is only ever returned here."""
        return self.refresh_ledger.issue(db, user.id, family_id=family_id)

    def verify(self, token: str) -> Result[AccessTokenClaims]:
        """
        Stateless phase: signature, issuer, audience, type and lifetime.

        Touches no storage, so it is safe to call from anywhere.

        Returns:
            Result with claims, or MALFORMED / EXPIRED
        """
        try:
            payload = decode_jwt(
                token,
                self.settings.SECRET_KEY,
                self.settings.ALGORITHM,
                issuer=self.settings.JWT_ISSUER,
                audience=self.settings.JWT_AUDIENCE,
            )
        except JWTError:
            return Result.failure(ErrorKind.MALFORMED)

        claims = self._claims_from_payload(payload)
        if claims is None:
            return Result.failure(ErrorKind.MALFORMED)

        if self.clock.now() >= claims.expires_at + self.skew:
            return Result.failure(ErrorKind.EXPIRED)
        return Result.success(claims)

    def validate_access_token(self, db: Session, token: str) -> Result[AccessTokenClaims]:
        """
        Full validation: the stateless phase followed by the blacklist lookup.

        Exactly one failure kind is reported: MALFORMED, EXPIRED or BLACKLISTED.
        """
        result = self.verify(token)
        if result.ok and self.blacklist.is_blacklisted(db, result.value.jti):
            result = Result.failure(ErrorKind.BLACKLISTED)
        if not result.ok:
            TOKEN_VALIDATION_FAILURES.labels(result.error.value).inc()
        return result

    def read_claims_unverified(self, token: str) -> Optional[Dict[str, Any]]:
        """Parse claims without signature checks; None when the token is not a JWT."""
        try:
            claims = read_unverified_claims(token)
        except JWTError:
            return None
        return claims if isinstance(claims, dict) else None

    def peek_subject(self, token: str) -> Optional[int]:
        """User id of a token that passes the stateless phase, else None."""
        result = self.verify(token)
        return result.value.user_id if result.ok else None

    @staticmethod
    def _claims_from_payload(payload: Dict[str, Any]) -> Optional[AccessTokenClaims]:
        if payload.get("typ") != ACCESS_TOKEN_TYPE:
            return None
        if any(payload.get(name) in (None, "") for name in REQUIRED_CLAIMS):
            return None
        try:
            user_id = int(payload["sub"])
            issued_at = from_timestamp(float(payload["iat"]))
            expires_at = from_timestamp(float(payload["exp"]))
        except (TypeError, ValueError, OverflowError, OSError):
            return None

        permissions = payload.get("permissions") or []
        if not isinstance(permissions, list):
            return None
        return AccessTokenClaims(
            jti=str(payload["jti"]),
            user_id=user_id,
            username=payload.get("username"),
            role=str(payload.get("role") or ""),
            permissions=tuple(str(item) for item in permissions),
            issued_at=issued_at,
            expires_at=expires_at,
        )

