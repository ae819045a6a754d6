from datetime import timedelta
from types import SimpleNamespace

from app.core.results import ErrorKind
from app.core.security import encode_jwt
from app.services.token_service import TokenService

from conftest import TEST_SECRET


def _user(user_id=7, role="user", extra_permissions=None):
    return SimpleNamespace(id=user_id, username="alice", role=role, extra_permissions=extra_permissions)


def test_issued_token_verifies_with_claims(settings, clock):
    tokens = TokenService(settings, clock)
    issued = tokens.issue_access_token(_user())

    result = tokens.verify(issued.token)

    assert result.ok
    assert result.value.user_id == 7
    assert result.value.jti == issued.claims.jti
    assert result.value.role == "user"
    assert "jobs:read" in result.value.permissions
    assert result.value.expires_at - result.value.issued_at == timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )


def test_each_token_gets_a_unique_jti(settings, clock):
    tokens = TokenService(settings, clock)
    first = tokens.issue_access_token(_user())
    second = tokens.issue_access_token(_user())
    assert first.claims.jti != second.claims.jti


def test_extra_permissions_are_merged_into_claims(settings, clock):
    tokens = TokenService(settings, clock)
    issued = tokens.issue_access_token(_user(role="viewer", extra_permissions='["audit:read"]'))
    assert "audit:read" in issued.claims.permissions
    assert "jobs:write" not in issued.claims.permissions


def test_tampered_token_is_malformed(settings, clock):
    tokens = TokenService(settings, clock)
    token = tokens.issue_access_token(_user()).token
    header, payload, signature = token.split(".")
    forged = ".".join([header, payload, signature[::-1]])

    assert tokens.verify(forged).error is ErrorKind.MALFORMED
    assert tokens.verify("garbage").error is ErrorKind.MALFORMED


def test_token_signed_with_other_key_is_malformed(settings, clock):
    tokens = TokenService(settings, clock)
    other = TokenService(settings.model_copy(update={"SECRET_KEY": "x" * 48}), clock)
    assert tokens.verify(other.issue_access_token(_user()).token).error is ErrorKind.MALFORMED


def test_token_for_other_audience_is_malformed(settings, clock):
    tokens = TokenService(settings, clock)
    foreign = TokenService(settings.model_copy(update={"JWT_AUDIENCE": "SomeoneElse"}), clock)
    assert tokens.verify(foreign.issue_access_token(_user()).token).error is ErrorKind.MALFORMED


def test_non_access_token_type_is_malformed(settings, clock):
    tokens = TokenService(settings, clock)
    now = int(clock.timestamp())
    token = encode_jwt(
        {
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
            "typ": "refresh",
            "jti": "abc",
            "sub": "1",
            "iat": now,
            "exp": now + 600,
        },
        TEST_SECRET,
        settings.ALGORITHM,
    )
    assert tokens.verify(token).error is ErrorKind.MALFORMED


def test_token_without_audience_is_malformed(settings, clock):
    tokens = TokenService(settings, clock)
    now = int(clock.timestamp())
    token = encode_jwt(
        {
            "iss": settings.JWT_ISSUER,
            "typ": "access",
            "jti": "no-aud",
            "sub": "1",
            "role": "admin",
            "iat": now,
            "exp": now + 600,
        },
        TEST_SECRET,
        settings.ALGORITHM,
    )
    assert tokens.verify(token).error is ErrorKind.MALFORMED


def test_token_expires_exactly_at_exp(settings, clock):
    tokens = TokenService(settings, clock)
    token = tokens.issue_access_token(_user()).token

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES, seconds=-1)
    assert tokens.verify(token).ok

    clock.advance(seconds=1)
    assert tokens.verify(token).error is ErrorKind.EXPIRED


def test_clock_skew_extends_lifetime(settings, clock):
    tokens = TokenService(settings.model_copy(update={"TOKEN_CLOCK_SKEW_SECONDS": 30}), clock)
    token = tokens.issue_access_token(_user()).token

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES, seconds=29)
    assert tokens.verify(token).ok
    clock.advance(seconds=1)
    assert tokens.verify(token).error is ErrorKind.EXPIRED


def test_blacklisted_token_fails_full_validation_only(settings, clock, db):
    tokens = TokenService(settings, clock)
    issued = tokens.issue_access_token(_user())
    assert tokens.validate_access_token(db, issued.token).ok

    tokens.blacklist.add(db, issued.claims.jti, issued.claims.expires_at, user_id=7)

    assert tokens.validate_access_token(db, issued.token).error is ErrorKind.BLACKLISTED
    # The stateless phase does not consult the blacklist
    assert tokens.verify(issued.token).ok


def test_expiry_is_reported_before_blacklist(settings, clock, db):
    tokens = TokenService(settings, clock)
    issued = tokens.issue_access_token(_user())
    tokens.blacklist.add(db, issued.claims.jti, issued.claims.expires_at, user_id=7)

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    assert tokens.validate_access_token(db, issued.token).error is ErrorKind.EXPIRED


def test_peek_subject(settings, clock):
    tokens = TokenService(settings, clock)
    assert tokens.peek_subject(tokens.issue_access_token(_user(user_id=42)).token) == 42
    assert tokens.peek_subject("nope") is None
