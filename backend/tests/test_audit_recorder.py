import threading
from datetime import datetime

from app.models.audit import AuditLog
from app.services.audit_service import AuditEntry, AuditRecorder, list_events


def _entry(path="/api/v1/things", status_code=200, user_id=None):
    return AuditEntry(
        method="GET",
        path=path,
        status_code=status_code,
        duration_ms=1.5,
        created_at=datetime(2026, 1, 1, 12, 0, 0),
        user_id=user_id,
    )


def test_recorded_entries_are_persisted(session_factory):
    recorder = AuditRecorder(session_factory)
    recorder.record(_entry())
    recorder.record(_entry(status_code=404))
    recorder.flush()
    recorder.shutdown()

    db = session_factory()
    try:
        assert sorted(row.status_code for row in db.query(AuditLog).all()) == [200, 404]
    finally:
        db.close()


def test_persistence_failure_never_reaches_the_caller():
    def broken_factory():
        raise RuntimeError("database is gone")

    recorder = AuditRecorder(broken_factory)
    recorder.record(_entry())
    recorder.flush()
    recorder.shutdown()


def test_records_after_shutdown_are_dropped(session_factory):
    recorder = AuditRecorder(session_factory)
    recorder.shutdown()
    recorder.record(_entry())

    db = session_factory()
    try:
        assert db.query(AuditLog).count() == 0
    finally:
        db.close()


def test_list_events_filters(session_factory):
    recorder = AuditRecorder(session_factory)
    recorder.record(_entry(path="/api/v1/auth/login", user_id=1))
    recorder.record(_entry(path="/api/v1/admin/audit-logs", status_code=403, user_id=2))
    recorder.record(_entry(path="/api/v1/admin/audit-logs", user_id=1))
    recorder.flush()
    recorder.shutdown()

    db = session_factory()
    try:
        assert len(list_events(db, user_id=1)) == 2
        assert len(list_events(db, path_prefix="/api/v1/admin")) == 2
        assert [e.user_id for e in list_events(db, status_code=403)] == [2]
        assert len(list_events(db, limit=1)) == 1
    finally:
        db.close()


def test_backlog_is_bounded_and_excess_entries_are_dropped(session_factory):
    gate = threading.Event()

    def slow_factory():
        gate.wait(5)
        return session_factory()

    recorder = AuditRecorder(slow_factory, max_workers=1, max_pending=2)
    for _ in range(5):
        recorder.record(_entry())

    assert recorder.dropped == 3
    gate.set()
    recorder.flush()
    recorder.shutdown()

    db = session_factory()
    try:
        assert db.query(AuditLog).count() == 2
    finally:
        db.close()
