"""
Periodic expired-session purge.

Runs SessionStore.purge_expired() on an APScheduler BackgroundScheduler for
the life of the process. A failed run is logged and retried on the next tick;
it never takes the process down.

Usage:
    from core.scheduler import SessionCleanupScheduler

    cleanup = SessionCleanupScheduler(store, interval_seconds=300)
    cleanup.start()
    ...
    cleanup.stop()
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.timestamps import isonow

logger = logging.getLogger(__name__)

JOB_ID = "sso_session_cleanup"


@dataclass
class CleanupStats:
    """Run statistics for the purge job."""
    run_count: int = 0
    error_count: int = 0
    last_run: Optional[str] = None
    last_status: str = "pending"
    last_result: Optional[int] = None
    total_purged: int = 0

    def to_dict(self) -> dict:
        return {
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_run": self.last_run,
            "last_status": self.last_status,
            "last_result": self.last_result,
            "total_purged": self.total_purged,
        }


class SessionCleanupScheduler:
    """Owns the background scheduler that sweeps expired sessions."""

    def __init__(self, store, interval_seconds: int = 300):
        self._store = store
        self._interval_seconds = interval_seconds
        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        self._lock = threading.Lock()
        self.stats = CleanupStats()

    @property
    def scheduler(self) -> BackgroundScheduler:
        """Get or create the scheduler instance."""
        if self._scheduler is None:
            job_defaults = {
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one sweep at a time
                'misfire_grace_time': self._interval_seconds,
            }
            self._scheduler = BackgroundScheduler(job_defaults=job_defaults, timezone='UTC')
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scheduler."""
        if self._running:
            return
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            name="Expired SSO session purge",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Session cleanup scheduled every {self._interval_seconds}s")

    def stop(self):
        """Stop the scheduler."""
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Session cleanup scheduler stopped")

    def run_once(self) -> Optional[int]:
        """Run one purge. Returns the purged count, or None if the run failed."""
        with self._lock:
            self.stats.run_count += 1
            self.stats.last_run = isonow()
            try:
                purged = self._store.purge_expired()
            except Exception as e:
                self.stats.error_count += 1
                self.stats.last_status = "failed"
                self.stats.last_result = None
                logger.error(f"Session cleanup failed: {e}", exc_info=True)
                return None

            self.stats.last_status = "success"
            self.stats.last_result = purged
            self.stats.total_purged += purged
            if purged:
                logger.info(f"Session cleanup purged {purged} expired record(s)")
            return purged
