import threading

from app.core.results import ErrorKind
from app.models.security import RefreshToken
from app.services.auth_service import AuthService
from app.services.refresh_ledger import REASON_REUSE_DETECTED, REASON_ROTATED

from conftest import PASSWORD


def _login(auth, db, identifier="alice"):
    result = auth.login(db, identifier, PASSWORD)
    assert result.ok, result.error
    return result.value


def test_login_persists_an_active_refresh_record(auth_service, make_user, db, clock):
    user = make_user()
    tokens = _login(auth_service, db)

    record = auth_service.refresh_ledger.find(db, tokens.refresh_token)
    assert record is not None
    assert record.user_id == user.id
    assert record.revoked is False
    assert record.expires_at > clock.now()
    # Only the digest is stored
    assert record.token_hash != tokens.refresh_token


def test_rotation_revokes_the_presented_token(auth_service, make_user, db):
    make_user()
    first = _login(auth_service, db)

    rotated = auth_service.refresh(db, first.refresh_token, revoked_by="127.0.0.1")

    assert rotated.ok
    assert rotated.value.refresh_token != first.refresh_token
    old = auth_service.refresh_ledger.find(db, first.refresh_token)
    new = auth_service.refresh_ledger.find(db, rotated.value.refresh_token)
    db.refresh(old)
    assert old.revoked is True
    assert old.revoke_reason == REASON_ROTATED
    assert old.revoked_by == "127.0.0.1"
    assert old.replaced_by_id == new.id
    assert new.family_id == old.family_id
    assert auth_service.tokens.verify(rotated.value.access_token).ok


def test_rotated_token_cannot_be_used_again(auth_service, make_user, db):
    make_user()
    first = _login(auth_service, db)
    second = auth_service.refresh(db, first.refresh_token)
    assert second.ok

    replay = auth_service.refresh(db, first.refresh_token)

    assert replay.error is ErrorKind.INVALID_REFRESH_TOKEN
    # Within the grace period the replacement stays usable
    assert auth_service.refresh(db, second.value.refresh_token).ok


def test_reuse_after_grace_period_revokes_the_family(auth_service, make_user, db, clock, settings):
    make_user()
    first = _login(auth_service, db)
    second = auth_service.refresh(db, first.refresh_token).value

    clock.advance(seconds=settings.REFRESH_REUSE_GRACE_SECONDS + 1)
    assert auth_service.refresh(db, first.refresh_token).error is ErrorKind.INVALID_REFRESH_TOKEN

    successor = auth_service.refresh_ledger.find(db, second.refresh_token)
    db.refresh(successor)
    assert successor.revoked is True
    assert successor.revoke_reason == REASON_REUSE_DETECTED
    assert auth_service.refresh(db, second.refresh_token).error is ErrorKind.INVALID_REFRESH_TOKEN


def test_reuse_detection_can_be_disabled(settings, clock, make_user, db, notifier):
    auth = AuthService(settings.model_copy(update={"REFRESH_REUSE_REVOKES_FAMILY": False}), clock, notifier=notifier)
    make_user()
    first = _login(auth, db)
    second = auth.refresh(db, first.refresh_token).value

    clock.advance(minutes=5)
    assert not auth.refresh(db, first.refresh_token).ok
    assert auth.refresh(db, second.refresh_token).ok


def test_unknown_and_expired_refresh_tokens_fail(auth_service, make_user, db, clock, settings):
    make_user()
    tokens = _login(auth_service, db)

    assert auth_service.refresh(db, "not-a-real-token").error is ErrorKind.INVALID_REFRESH_TOKEN
    assert auth_service.refresh(db, "").error is ErrorKind.INVALID_REFRESH_TOKEN

    clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    assert auth_service.refresh(db, tokens.refresh_token).error is ErrorKind.INVALID_REFRESH_TOKEN


def test_refresh_fails_for_deactivated_user(auth_service, make_user, db):
    user = make_user()
    tokens = _login(auth_service, db)
    auth_service.set_user_active(db, user.id, False, revoked_by="admin")

    assert auth_service.refresh(db, tokens.refresh_token).error is ErrorKind.INVALID_REFRESH_TOKEN


def test_concurrent_rotation_has_exactly_one_winner(auth_service, make_user, session_factory):
    make_user()
    db = session_factory()
    try:
        tokens = _login(auth_service, db)
    finally:
        db.close()

    workers = 8
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        session = session_factory()
        try:
            barrier.wait()
            result = auth_service.refresh(session, tokens.refresh_token)
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(outcomes) == workers
    winners = [outcome for outcome in outcomes if outcome.ok]
    assert len(winners) == 1
    assert all(o.error is ErrorKind.INVALID_REFRESH_TOKEN for o in outcomes if not o.ok)

    db = session_factory()
    try:
        active = db.query(RefreshToken).filter(RefreshToken.revoked == False).all()  # noqa: E712
        assert len(active) == 1
        # The losers arrived inside the grace period, so the winner's token survives
        assert auth_service.refresh(db, winners[0].value.refresh_token).ok
    finally:
        db.close()


def test_consume_is_a_conditional_update(auth_service, make_user, session_factory):
    user = make_user()
    db = session_factory()
    try:
        _, record = auth_service.refresh_ledger.issue(db, user.id)
        db.commit()
        assert auth_service.refresh_ledger.consume(db, record.id) is True
        db.commit()
        assert auth_service.refresh_ledger.consume(db, record.id) is False
        db.rollback()
    finally:
        db.close()
