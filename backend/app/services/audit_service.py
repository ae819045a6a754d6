"""Best-effort, detached persistence of request audit records."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session, sessionmaker

from app.core.metrics import AUDIT_DROPPED, AUDIT_FAILURES
from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    """Who did what, when, and how it ended."""

    method: str
    path: str
    status_code: int
    duration_ms: float
    created_at: datetime
    request_id: Optional[str] = None
    user_id: Optional[int] = None
    user_role: Optional[str] = None
    query_string: Optional[str] = None
    request_body: Optional[str] = None
    response_size: Optional[int] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    exception: Optional[str] = None


class AuditRecorder:
    """
    Persist audit entries on a small worker pool.

    `record` never raises and never waits on the database; persistence
    failures are logged and counted. Writes may land in any order. At most
    `max_pending` entries are queued or in flight; past that, entries are
    dropped and counted.
    """

    def __init__(self, session_factory: sessionmaker, max_workers: int = 2, max_pending: int = 1000) -> None:
        self.session_factory = session_factory
        self.max_pending = max(1, max_pending)
        self.dropped = 0
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="audit")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._in_flight = 0
        self._shedding = False
        self._closed = False

    def record(self, entry: AuditEntry) -> None:
        if self._closed:
            return
        with self._pending_lock:
            if self._in_flight >= self.max_pending:
                self.dropped += 1
                AUDIT_DROPPED.inc()
                if not self._shedding:
                    self._shedding = True
                    logger.warning("Audit backlog at %d entries; dropping new entries", self.max_pending)
                return
            self._in_flight += 1
            self._shedding = False
        try:
            future = self._executor.submit(self._persist, entry)
        except RuntimeError:
            # Executor already shut down
            with self._pending_lock:
                self._in_flight -= 1
            logger.warning("Audit recorder closed; dropping entry for %s %s", entry.method, entry.path)
            return
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
            self._in_flight -= 1

    def _persist(self, entry: AuditEntry) -> None:
        db = None
        try:
            db = self.session_factory()
            db.add(AuditLog(**asdict(entry)))
            db.commit()
        except Exception:
            if db is not None:
                db.rollback()
            AUDIT_FAILURES.inc()
            logger.exception("Failed to persist audit entry for %s %s", entry.method, entry.path)
        finally:
            if db is not None:
                db.close()

    def flush(self, timeout: Optional[float] = 5.0) -> None:
        """Wait for entries already submitted."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)


def list_events(
    db: Session,
    *,
    user_id: Optional[int] = None,
    path_prefix: Optional[str] = None,
    status_code: Optional[int] = None,
    limit: int = 100,
) -> List[AuditLog]:
    """
    Most recent audit rows first

    Args:
        db: Database session
        user_id: Only this caller
        path_prefix: Only paths starting with this
        status_code: Only this response status
        limit: Maximum rows returned

    Returns:
        List of audit rows
    """
    query = db.query(AuditLog)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if path_prefix:
        query = query.filter(AuditLog.path.startswith(path_prefix, autoescape=True))
    if status_code is not None:
        query = query.filter(AuditLog.status_code == status_code)
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
