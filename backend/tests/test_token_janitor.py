import threading

from app.services.token_janitor import TokenJanitor

from conftest import PASSWORD


def test_run_once_reports_removed_rows(auth_service, make_user, session_factory, clock, settings):
    make_user()
    db = session_factory()
    try:
        assert auth_service.login(db, "alice", PASSWORD).ok
    finally:
        db.close()
    janitor = TokenJanitor(session_factory, auth_service.purge_expired, interval_seconds=60)

    assert janitor.run_once() == 0
    clock.advance(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    assert janitor.run_once() == 1

    status = janitor.status()
    assert status["runs"] == 2
    assert status["rows_removed"] == 1
    assert status["running"] is False


def test_failing_purge_is_logged_not_raised(session_factory):
    def purge(db):
        raise RuntimeError("boom")

    janitor = TokenJanitor(session_factory, purge, interval_seconds=60)

    assert janitor.run_once() == 0
    assert janitor.status()["runs"] == 1


def test_start_and_stop(session_factory):
    ran = threading.Event()

    def purge(db):
        ran.set()
        return {"refresh_tokens": 0}

    janitor = TokenJanitor(session_factory, purge, interval_seconds=60)
    janitor.start()
    try:
        assert janitor.is_running()
        assert ran.wait(timeout=5)
    finally:
        janitor.stop()

    assert not janitor.is_running()
