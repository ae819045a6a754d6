"""Background thread that purges expired token rows."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from app.core.metrics import JANITOR_UP_GAUGE

logger = logging.getLogger(__name__)


class TokenJanitor:
    """Periodically run a purge callable against a fresh session."""

    def __init__(
        self,
        session_factory: sessionmaker,
        purge: Callable,
        interval_seconds: float = 3600.0,
    ) -> None:
        self.session_factory = session_factory
        self.purge = purge
        self.interval_seconds = max(1.0, interval_seconds)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._runs: int = 0
        self._removed: int = 0
        self._lock = threading.Lock()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="token-janitor", daemon=True)
        self._thread.start()
        JANITOR_UP_GAUGE.set(1)
        logger.info("Token janitor started (interval %.0fs)", self.interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        JANITOR_UP_GAUGE.set(0)
        logger.info("Token janitor stopped")

    def status(self) -> dict:
        with self._lock:
            return {
                "running": self.is_running(),
                "last_heartbeat": self._heartbeat,
                "runs": self._runs,
                "rows_removed": self._removed,
            }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> int:
        """One purge pass; failures are logged and retried on the next tick."""
        db = self.session_factory()
        try:
            counts = self.purge(db)
            removed = sum(counts.values())
        except Exception as exc:
            logger.exception("Token purge failed: %s", exc)
            db.rollback()
            removed = 0
        finally:
            db.close()

        with self._lock:
            self._heartbeat = time.time()
            self._runs += 1
            self._removed += removed
        return removed
