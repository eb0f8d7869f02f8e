"""
Periodic flush scheduler.

Schedules the usage cache flush as a background interval job.
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .cache import FlushResult, UsageCache

logger = logging.getLogger(__name__)

FLUSH_JOB_ID = "usage_flush"


class FlushScheduler:
    """
    Runs ``UsageCache.flush`` every ``interval_minutes``.

    The job is limited to one running instance and missed runs are
    coalesced, so flushes never overlap. When export is disabled the job
    keeps firing but does not flush.
    """

    def __init__(
        self,
        cache: UsageCache,
        interval_minutes: float = 1,
        enabled: bool = True,
        flush_on_stop: bool = True
    ):
        """
        Initialize flush scheduler.

        Args:
            cache: Cache to drain
            interval_minutes: Minutes between flushes
            enabled: Whether usage export is switched on
            flush_on_stop: Drain the cache one last time when stopped
        """
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be > 0")

        self.cache = cache
        self.interval_minutes = interval_minutes
        self.enabled = enabled
        self.flush_on_stop = flush_on_stop

        self.scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self) -> None:
        """Start the periodic flush job."""
        if self.running:
            logger.warning("Flush scheduler already running")
            return

        logger.info(
            f"Starting usage flush scheduler "
            f"(interval={self.interval_minutes}min, enabled={self.enabled})"
        )
        self.scheduler = BackgroundScheduler(daemon=True)
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=FLUSH_JOB_ID,
            name="Usage Flush",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()

    def stop(self) -> None:
        """Stop the job, waiting for an in-flight flush, then drain."""
        if not self.running:
            return

        logger.info("Stopping usage flush scheduler")
        self.scheduler.shutdown(wait=True)
        self.scheduler = None

        if self.flush_on_stop:
            self.run_once()

    def run_once(self) -> Optional[FlushResult]:
        """Flush now if export is enabled; errors are logged, not raised."""
        if not self.enabled:
            return None
        try:
            logger.info("Updating usage dashboard data")
            return self.cache.flush()
        except Exception as e:
            logger.error(f"Usage flush failed: {e}", exc_info=True)
            return None
