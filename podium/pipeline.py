"""Race ingestion pipeline: rate the race, then feed streaks and odds."""

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from podium.betting.cycle import WeeklyBettingCycle
from podium.config import local_now_naive
from podium.models.betting import BettingWeekStatus
from podium.odds.engine import RecomputeTrigger
from podium.odds.worker import OddsRecomputeWorker, odds_worker
from podium.progress.streaks import StreakTracker
from podium.rating.updater import RaceResultIn, RatingUpdater, RaceUpdate

logger = logging.getLogger(__name__)


async def process_race(
    db: AsyncSession,
    race_id: str,
    results: Sequence[RaceResultIn],
    played_at: Optional[datetime] = None,
    worker: Optional[OddsRecomputeWorker] = None,
    now: Optional[datetime] = None,
) -> RaceUpdate:
    """Ingest one race end to end.

    A rating failure raises before anything downstream runs, so odds are
    never recomputed from a half-applied race.
    """
    worker = worker or odds_worker
    played_at = played_at or local_now_naive()

    update = await RatingUpdater(db).ingest_race(race_id, results, played_at=played_at)

    await StreakTracker(db).record_play(update.competitor_ids, played_at.date())

    week = await WeeklyBettingCycle(db).get_current_week(now)
    if week.status != BettingWeekStatus.FINALIZED.value:
        worker.request(week.id, RecomputeTrigger.RACE)
        logger.debug(f"Odds recompute queued for week {week.id} after race {race_id}")
    return update
