"""Activity log for tracking scheduler and engine actions."""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from podium.config import local_now_naive

logger = logging.getLogger(__name__)


# Activity types
class ActivityType:
    RACE_RATED = "race_rated"
    RACE_FAILED = "race_failed"
    ODDS_RECOMPUTED = "odds_recomputed"
    WEEK_TRANSITION = "week_transition"
    SETTLEMENT = "settlement"
    SOFT_RESET = "soft_reset"
    ARCHIVE = "archive"
    SCHEDULER_JOB = "scheduler_job"
    SYSTEM = "system"


@dataclass
class ActivityEntry:
    """Single activity log entry."""

    timestamp: datetime
    activity_type: str
    message: str
    week_id: Optional[str] = None
    details: Optional[str] = None
    status: str = "info"  # info, success, warning, error

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "time_str": self.timestamp.strftime("%H:%M:%S"),
            "activity_type": self.activity_type,
            "message": self.message,
            "week_id": self.week_id,
            "details": self.details,
            "status": self.status,
        }


class ActivityLog:
    """In-memory activity log with fixed size."""

    def __init__(self, max_entries: int = 100):
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)

    def log(
        self,
        activity_type: str,
        message: str,
        week_id: Optional[str] = None,
        details: Optional[str] = None,
        status: str = "info",
    ) -> None:
        """Add an activity to the log."""
        entry = ActivityEntry(
            timestamp=local_now_naive(),
            activity_type=activity_type,
            message=message,
            week_id=week_id,
            details=details,
            status=status,
        )
        self._entries.appendleft(entry)

        # Also log to standard logger
        log_level = logging.INFO
        if status == "error":
            log_level = logging.ERROR
        elif status == "warning":
            log_level = logging.WARNING
        logger.log(log_level, f"[Activity] {message}" + (f" ({week_id})" if week_id else ""))

    def get_entries(self, limit: int = 50) -> list[dict]:
        """Get recent entries as dicts."""
        entries = list(self._entries)[:limit]
        return [e.to_dict() for e in entries]

    def clear(self) -> None:
        """Clear all entries."""
        self._entries.clear()


# Global activity log instance
activity_log = ActivityLog()


def log_race_rated(race_id: str, competitors: int, version: int) -> None:
    activity_log.log(
        ActivityType.RACE_RATED,
        f"Rated race {race_id}",
        details=f"{competitors} competitors, store v{version}",
        status="success",
    )


def log_race_failed(race_id: str, reason: str) -> None:
    activity_log.log(
        ActivityType.RACE_FAILED,
        f"Race {race_id} rejected",
        details=reason,
        status="error",
    )


def log_odds_recomputed(week_id: str, trigger: str, eligible: int) -> None:
    activity_log.log(
        ActivityType.ODDS_RECOMPUTED,
        f"Odds recomputed ({trigger})",
        week_id=week_id,
        details=f"{eligible} eligible competitors",
        status="success",
    )


def log_week_transition(week_id: str, old_status: str, new_status: str) -> None:
    activity_log.log(
        ActivityType.WEEK_TRANSITION,
        f"Week {old_status} -> {new_status}",
        week_id=week_id,
    )


def log_settlement(week_id: str, bets_settled: int = 0, points: float = 0) -> None:
    """Log settlement."""
    activity_log.log(
        ActivityType.SETTLEMENT,
        f"Settled {bets_settled} bets",
        week_id=week_id,
        details=f"{points:.2f} points awarded" if points else None,
        status="success",
    )


def log_soft_reset(year: int, month: int, competitors: int) -> None:
    activity_log.log(
        ActivityType.SOFT_RESET,
        f"Soft reset applied for {year}-{month:02d}",
        details=f"{competitors} competitors",
    )


def log_archive(year: int, month: int) -> None:
    activity_log.log(ActivityType.ARCHIVE, f"Archived season {year}-{month:02d}", status="success")


def log_scheduler_job(job_name: str, status: str = "info") -> None:
    """Log scheduler job execution."""
    activity_log.log(
        ActivityType.SCHEDULER_JOB,
        f"Scheduler: {job_name}",
        status=status,
    )


def log_system(message: str, status: str = "info") -> None:
    """Log system event."""
    activity_log.log(
        ActivityType.SYSTEM,
        message,
        status=status,
    )
