"""Background scheduler for periodic sync"""

import logging
import threading
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from syncbridge.cancellation import CancellationToken
from syncbridge.config import settings
from syncbridge.models.entities import SyncResult
from syncbridge.services.orchestrator import SyncOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "sync_cycle"


class SyncScheduler:
    """Scheduler for periodic sync cycles"""

    def __init__(
        self,
        orchestrator: Optional[SyncOrchestrator] = None,
        interval_seconds: Optional[int] = None,
    ):
        self.scheduler = BackgroundScheduler()
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.cancellation = CancellationToken()
        self._orchestrator_lock = threading.Lock()

    def get_orchestrator(self) -> SyncOrchestrator:
        """Return the orchestrator, building it from settings on first use"""
        with self._orchestrator_lock:
            if self.orchestrator is None:
                self.orchestrator = build_orchestrator(settings)
            return self.orchestrator

    def start(self):
        """Start the scheduler"""
        self.get_orchestrator()
        interval = self.interval_seconds or settings.poll_interval_seconds
        if self.cancellation.cancelled:
            # Restarted after stop(); the old token stays cancelled.
            self.cancellation = CancellationToken()

        self.scheduler.add_job(
            func=self._sync_job,
            trigger=IntervalTrigger(seconds=interval),
            id=SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started, polling every {interval} seconds")

    def stop(self):
        """Stop the scheduler, aborting a cycle that is still running"""
        self.cancellation.cancel("Scheduler stopping")
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def run_now(self) -> List[SyncResult]:
        """Run one cycle synchronously"""
        return self.get_orchestrator().run_cycle(self.cancellation)

    def _sync_job(self):
        """Job function running one sync cycle"""
        try:
            logger.info("Running scheduled sync cycle")
            results = self.run_now()
            failed = sum(1 for r in results if not r.success)
            logger.info(f"Scheduled sync cycle completed: {len(results)} pairs, {failed} failed")
        except Exception as e:
            logger.error(f"Scheduled sync cycle failed: {e}")


# Global scheduler instance
scheduler = SyncScheduler()


def get_orchestrator() -> SyncOrchestrator:
    """FastAPI dependency returning the running orchestrator"""
    return scheduler.get_orchestrator()
