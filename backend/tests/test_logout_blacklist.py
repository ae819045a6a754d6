from datetime import timedelta

from app.core.results import ErrorKind
from app.core.security import encode_jwt
from app.models.security import BlacklistedToken

from conftest import PASSWORD


def _login(auth, db):
    result = auth.login(db, "alice", PASSWORD)
    assert result.ok
    return result.value


def test_logged_out_token_is_blacklisted_until_it_expires(auth_service, make_user, db, clock, settings):
    make_user()
    tokens = _login(auth_service, db)
    assert auth_service.validate_token(db, tokens.access_token).ok

    outcome = auth_service.logout(db, tokens.access_token)

    assert outcome.ok
    assert outcome.value.blacklisted is True
    assert auth_service.validate_token(db, tokens.access_token).error is ErrorKind.BLACKLISTED

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    assert auth_service.validate_token(db, tokens.access_token).error is ErrorKind.EXPIRED


def test_blacklist_entry_expires_with_the_token(auth_service, make_user, db, settings):
    make_user()
    tokens = _login(auth_service, db)
    auth_service.logout(db, tokens.access_token)

    entry = db.query(BlacklistedToken).one()
    claims = auth_service.tokens.verify(tokens.access_token).value
    assert entry.jti == claims.jti
    assert entry.expires_at == claims.expires_at
    assert entry.user_id == claims.user_id


def test_logout_revokes_refresh_tokens(auth_service, make_user, db):
    make_user()
    tokens = _login(auth_service, db)

    outcome = auth_service.logout(db, tokens.access_token, refresh_token=tokens.refresh_token)

    assert outcome.value.refresh_tokens_revoked >= 1
    assert auth_service.refresh(db, tokens.refresh_token).error is ErrorKind.INVALID_REFRESH_TOKEN


def test_logout_twice_is_harmless(auth_service, make_user, db):
    make_user()
    tokens = _login(auth_service, db)
    assert auth_service.logout(db, tokens.access_token).value.blacklisted is True

    again = auth_service.logout(db, tokens.access_token)

    assert again.ok
    assert again.value.blacklisted is False
    assert db.query(BlacklistedToken).count() == 1


def test_logout_without_token(auth_service, db):
    assert auth_service.logout(db, None).error is ErrorKind.TOKEN_NOT_FOUND
    assert auth_service.logout(db, "").error is ErrorKind.TOKEN_NOT_FOUND
    assert auth_service.logout(db, "definitely-not-a-jwt").error is ErrorKind.MALFORMED


def test_logout_does_not_touch_other_sessions_of_unverified_tokens(auth_service, make_user, db, clock, settings):
    make_user()
    tokens = _login(auth_service, db)
    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES + 1)

    # An expired token can still be parsed, but its subject is not trusted
    outcome = auth_service.logout(db, tokens.access_token)

    assert outcome.ok
    assert outcome.value.blacklisted is False
    assert outcome.value.refresh_tokens_revoked == 0
    assert auth_service.refresh(db, tokens.refresh_token).ok


def test_purge_removes_only_expired_rows(auth_service, make_user, db, clock, settings):
    make_user()
    tokens = _login(auth_service, db)
    auth_service.logout(db, tokens.access_token)

    assert auth_service.purge_expired(db)["blacklisted_tokens"] == 0
    assert db.query(BlacklistedToken).count() == 1

    clock.advance(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    counts = auth_service.purge_expired(db)

    assert counts["blacklisted_tokens"] == 1
    assert db.query(BlacklistedToken).count() == 0
    # Past its own expiry the token is rejected anyway
    assert auth_service.validate_token(db, tokens.access_token).error is ErrorKind.EXPIRED


def test_purge_removes_expired_refresh_tokens(auth_service, make_user, db, clock, settings):
    make_user()
    _login(auth_service, db)
    clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    assert auth_service.purge_expired(db)["refresh_tokens"] == 1


def test_blacklist_entry_never_outlives_a_fresh_token(auth_service, db, clock, settings):
    now = int(clock.timestamp())
    far_future = encode_jwt(
        {"jti": "far-future", "sub": "1", "exp": now + 10 * 365 * 24 * 3600},
        "not-the-signing-key-0123456789abcdef0123",
        settings.ALGORITHM,
    )

    outcome = auth_service.logout(db, far_future)

    assert outcome.ok
    assert outcome.value.refresh_tokens_revoked == 0
    entry = db.query(BlacklistedToken).filter(BlacklistedToken.jti == "far-future").one()
    assert entry.expires_at == clock.now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
