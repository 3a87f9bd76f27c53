"""Periodic sync scheduling.

This module provides APScheduler integration for running the Gyazo sync on
an hourly interval. Instead of a fixed-rate interval job, every run schedules
the next one as a one-shot job once it finishes, so a slow sync pushes the
following run back rather than letting runs pile up.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from gyazobridge.core.sync import GyazoSyncEngine, NoticeCallback

logger = logging.getLogger(__name__)

JOB_ID = "gyazo_periodic_sync"
_HOUR_MS = 60 * 60 * 1000


def compute_next_run(last_fetch_ms: float, interval_hours: int, now_ms: float) -> float:
    """Return the epoch-ms time of the next periodic run.

    One interval after the last fetch, or right away when that moment has
    already passed.
    """
    return max(last_fetch_ms + interval_hours * _HOUR_MS, now_ms)


class PeriodicSyncScheduler:
    """Owns at most one pending periodic sync job.

    Features:
    - ``schedule()`` always removes the pending job before adding a new one
    - each run updates ``last_fetch_time`` and schedules its successor
    - ``shutdown()`` cancels the pending job and closes the engine so no
      callback fires into a disposed engine
    """

    def __init__(
        self,
        engine: GyazoSyncEngine,
        scheduler: AsyncIOScheduler | None = None,
        notify: NoticeCallback | None = None,
    ):
        """
        Initialize the periodic scheduler.

        Args:
            engine: Sync engine to run
            scheduler: Optional APScheduler instance (a new one by default)
            notify: Callback for user-facing messages from scheduled runs
        """
        self.engine = engine
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.notify = notify
        self.interval_hours = 0
        self._shutting_down = False

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    @property
    def next_run_time(self) -> datetime | None:
        """When the pending job fires, or None if nothing is scheduled."""
        job = self.scheduler.get_job(JOB_ID)
        if not job:
            return None
        next_run = getattr(job, "next_run_time", None)
        return next_run or job.trigger.run_date

    async def start(self) -> None:
        """Start the scheduler using the configured fetch interval."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._shutting_down = False
        await self.engine.initialize()
        await self.schedule(self.engine.config.fetch_interval)
        self.scheduler.start()
        logger.info("Periodic sync scheduler started")

    async def shutdown(self) -> None:
        """Cancel the pending job, stop the scheduler and close the engine."""
        self._shutting_down = True
        self.cancel()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.engine.close()
        logger.info("Periodic sync scheduler stopped")

    def cancel(self) -> None:
        """Remove the pending job, if any."""
        if self.scheduler.get_job(JOB_ID):
            self.scheduler.remove_job(JOB_ID)
            logger.debug("Pending periodic sync cancelled")

    async def schedule(self, interval_hours: int) -> datetime | None:
        """
        (Re)schedule the next periodic sync.

        Args:
            interval_hours: Hours between runs; 0 or less disables periodic sync

        Returns:
            The time the next run fires, or None when disabled
        """
        self.cancel()
        self.interval_hours = interval_hours

        if interval_hours <= 0:
            logger.info("Periodic sync is disabled")
            return None

        checkpoint = await self.engine.db.get_checkpoint()
        now_ms = datetime.now(timezone.utc).timestamp() * 1000
        next_ms = compute_next_run(checkpoint.last_fetch_time, interval_hours, now_ms)
        run_at = datetime.fromtimestamp(next_ms / 1000, tz=timezone.utc)

        self.scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=run_at),
            id=JOB_ID,
            name="Gyazo periodic sync",
            replace_existing=True,
            misfire_grace_time=None,
        )

        minutes = round((next_ms - now_ms) / 60000)
        logger.info(f"Periodic sync every {interval_hours}h, next run in {minutes} minutes")
        return run_at

    async def _fire(self) -> None:
        """Run a scheduled sync, then chain the next one."""
        logger.info("Running scheduled Gyazo sync")
        try:
            result = await self.engine.run_sync(self.notify)
            logger.info(result.summary)
        except Exception as e:
            logger.error(f"Scheduled Gyazo sync failed: {e}")

        if self._shutting_down:
            return

        checkpoint = await self.engine.db.get_checkpoint()
        checkpoint.last_fetch_time = datetime.now(timezone.utc).timestamp() * 1000
        await self.engine.db.save_checkpoint(checkpoint)

        await self.schedule(self.interval_hours)
