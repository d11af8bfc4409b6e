"""Scheduler manager for the betting calendar's cron jobs."""

import logging
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from podium.scheduler.jobs import JobType

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Manages background job scheduling."""

    def __init__(self):
        from podium.config import LOCAL_TZ

        self.scheduler = AsyncIOScheduler(timezone=LOCAL_TZ)
        self._started = False

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self.scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self.scheduler.shutdown(wait=True)
            self._started = False
            logger.info("Scheduler stopped")

    def add_cron_job(self, job_id: str, func: Callable, **cron_fields) -> None:
        """Schedule ``func`` on a cron trigger in the local timezone.

        A missed run (process asleep or restarting) still fires within
        five minutes; several missed runs collapse into one.
        """
        from podium.config import LOCAL_TZ

        cron_fields.setdefault("timezone", LOCAL_TZ)
        self.scheduler.add_job(
            func,
            CronTrigger(**cron_fields),
            id=job_id,
            replace_existing=True,
            misfire_grace_time=300,
            coalesce=True,
        )
        logger.info(f"Added cron job: {job_id}")

    def get_job(self, job_id: str) -> Optional[Any]:
        """Get a job by ID."""
        return self.scheduler.get_job(job_id)

    def get_jobs(self) -> list:
        """Get all scheduled jobs."""
        return self.scheduler.get_jobs()

    def setup_betting_jobs(self) -> list[str]:
        """Register the weekly cycle and month rollover crons.

        - Monday 00:05: open the week (or mark it CALIBRATION) and price it
        - Thursday 23:59: close betting
        - Sunday 20:00: final odds recompute, then finalize and settle
        - 1st of the month 00:00: archive last month, soft reset
        - Daily 00:10: expire play streaks, refresh 30-day race counts
        """
        from podium.scheduler.jobs import (
            close_week_job,
            expire_play_streaks_job,
            finalize_week_job,
            monthly_rollover_job,
            open_week_job,
        )

        self.add_cron_job(JobType.OPEN_WEEK.value, open_week_job, day_of_week="mon", hour=0, minute=5)
        self.add_cron_job(JobType.CLOSE_WEEK.value, close_week_job, day_of_week="thu", hour=23, minute=59)
        self.add_cron_job(JobType.FINALIZE_WEEK.value, finalize_week_job, day_of_week="sun", hour=20, minute=0)
        self.add_cron_job(JobType.MONTHLY_ROLLOVER.value, monthly_rollover_job, day=1, hour=0, minute=0)
        self.add_cron_job(JobType.EXPIRE_PLAY_STREAKS.value, expire_play_streaks_job, hour=0, minute=10)
        return [job.value for job in JobType]

    def get_status(self) -> dict:
        return {
            "running": self._started,
            "jobs": [
                {
                    "id": job.id,
                    "next_run_time": _format_run_time(getattr(job, "next_run_time", None)),
                }
                for job in self.get_jobs()
            ],
        }


def _format_run_time(run_time) -> Optional[str]:
    # Jobs added before start() have no next run time yet
    return run_time.isoformat() if run_time else None


# Global scheduler instance
scheduler_manager = SchedulerManager()
