"""Scheduled jobs driving the weekly cycle and the month rollover.

Every job opens its own session and returns a summary dict. Failures are
logged and recorded in the activity log, never raised into APScheduler,
so one bad run doesn't stop the schedule.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    """Types of scheduled jobs."""

    OPEN_WEEK = "open_week"
    CLOSE_WEEK = "close_week"
    FINALIZE_WEEK = "finalize_week"
    MONTHLY_ROLLOVER = "monthly_rollover"
    EXPIRE_PLAY_STREAKS = "expire_play_streaks"


async def open_week_job(now: Optional[datetime] = None) -> dict:
    """Monday 00:05: create this week (OPEN or CALIBRATION) and price it."""
    from podium.betting.cycle import WeeklyBettingCycle
    from podium.config import local_now_naive
    from podium.models.database import async_session
    from podium.odds.engine import OddsEngine, RecomputeTrigger
    from podium.scheduler.activity_log import log_scheduler_job

    now = now or local_now_naive()
    results = {"started_at": now.isoformat(), "week_id": None, "status": None, "errors": []}

    async with async_session() as db:
        try:
            week = await WeeklyBettingCycle(db).get_current_week(now)
            results["week_id"] = week.id
            results["status"] = week.status
            # Calibration weeks are priced too, for observability
            snapshot = await OddsEngine(db).recompute(week.id, RecomputeTrigger.WEEK_OPEN, now=now)
            results["snapshot_id"] = snapshot.id if snapshot else None
            log_scheduler_job(f"Week {week.id} opened ({week.status})", status="success")
        except Exception as e:
            logger.error(f"Open week job failed: {e}")
            results["errors"].append(str(e))
            log_scheduler_job(f"Open week failed: {e}", status="error")
    return results


async def close_week_job(now: Optional[datetime] = None) -> dict:
    """Thursday 23:59: stop accepting bets."""
    from podium.betting.cycle import WeeklyBettingCycle
    from podium.config import local_now_naive
    from podium.models.database import async_session
    from podium.scheduler.activity_log import log_scheduler_job

    now = now or local_now_naive()
    results = {"started_at": now.isoformat(), "week_id": None, "closed": False, "errors": []}

    async with async_session() as db:
        try:
            cycle = WeeklyBettingCycle(db)
            week = await cycle.ensure_week(now.date(), now)
            results["week_id"] = week.id
            results["closed"] = await cycle.close_week(week.id)
            log_scheduler_job(f"Week {week.id} closed", status="success")
        except Exception as e:
            logger.error(f"Close week job failed: {e}")
            results["errors"].append(str(e))
            log_scheduler_job(f"Close week failed: {e}", status="error")
    return results


async def finalize_week_job(now: Optional[datetime] = None) -> dict:
    """Sunday 20:00: last odds recompute, then finalize and settle."""
    from podium.betting.cycle import WeeklyBettingCycle
    from podium.betting.settlement import SettlementService
    from podium.config import local_now_naive
    from podium.models.database import async_session
    from podium.odds.engine import OddsEngine, RecomputeTrigger
    from podium.scheduler.activity_log import log_scheduler_job

    now = now or local_now_naive()
    results = {"started_at": now.isoformat(), "week_id": None, "bets_settled": 0, "errors": []}

    async with async_session() as db:
        try:
            cycle = WeeklyBettingCycle(db)
            week = await cycle.ensure_week(now.date(), now)
            results["week_id"] = week.id
            # A missed Thursday close is caught up here
            await cycle.advance(week, now)
            await OddsEngine(db).recompute(week.id, RecomputeTrigger.PRE_FINALIZE, now=now)
            settlement = await SettlementService(db).finalize_week(week.id, now=now)
            results["bets_settled"] = len(settlement.bets)
            results["podium"] = settlement.podium
            log_scheduler_job(f"Week {week.id} finalized", status="success")
        except Exception as e:
            logger.error(f"Finalize week job failed: {e}")
            results["errors"].append(str(e))
            log_scheduler_job(f"Finalize week failed: {e}", status="error")
    return results


async def monthly_rollover_job(now: Optional[datetime] = None) -> dict:
    """1st of the month 00:00: archive last month, soft reset ratings."""
    from podium.config import local_now_naive
    from podium.models.database import async_session
    from podium.scheduler.activity_log import log_scheduler_job
    from podium.seasons.archive import monthly_rollover

    now = now or local_now_naive()
    results = {"started_at": now.isoformat(), "errors": []}

    async with async_session() as db:
        try:
            results.update(await monthly_rollover(db, now))
            log_scheduler_job("Monthly rollover complete", status="success")
        except Exception as e:
            logger.error(f"Monthly rollover job failed: {e}")
            results["errors"].append(str(e))
            log_scheduler_job(f"Monthly rollover failed: {e}", status="error")
    return results


async def expire_play_streaks_job(now: Optional[datetime] = None) -> dict:
    """Daily 00:10: break play streaks that missed a day and refresh 30-day race counts."""
    from podium.config import local_now_naive
    from podium.models.database import async_session
    from podium.progress.streaks import StreakTracker
    from podium.rating.store import RatingStore
    from podium.scheduler.activity_log import log_scheduler_job

    now = now or local_now_naive()
    results = {"expired": 0, "counts_refreshed": 0, "errors": []}
    async with async_session() as db:
        try:
            lost = await StreakTracker(db).expire_play_streaks(now.date())
            results["expired"] = len(lost)
            results["counts_refreshed"] = await RatingStore(db).refresh_recent_counts(now)
            await db.commit()
            log_scheduler_job(
                f"Expired {len(lost)} play streaks, refreshed {results['counts_refreshed']} race counts",
                status="success",
            )
        except Exception as e:
            await db.rollback()
            logger.error(f"Daily maintenance failed: {e}")
            results["errors"].append(str(e))
            log_scheduler_job(f"Daily maintenance failed: {e}", status="error")
    return results
