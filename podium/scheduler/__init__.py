"""Background job scheduling for the betting cycle."""

from podium.scheduler.manager import SchedulerManager, scheduler_manager
from podium.scheduler.jobs import JobType

__all__ = ["SchedulerManager", "scheduler_manager", "JobType"]
