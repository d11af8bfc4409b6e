"""Monthly soft reset: pull ratings toward the prior and widen deviations."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from podium.config import local_now_naive
from podium.models.competitor import SoftResetLog
from podium.rating.glicko import BASE_RATING, MAX_RD
from podium.rating.store import RatingStore
from podium.scheduler.activity_log import log_soft_reset

logger = logging.getLogger(__name__)

RATING_CARRY = 0.75  # share of the old rating kept
RD_INFLATION = 50.0


def soft_reset(rating: float, rd: float) -> tuple[float, float]:
    """rating' = 0.75*rating + 0.25*1500, RD' = min(RD + 50, 350).

    Gaps between competitors shrink by a quarter but their order is kept
    (1800 -> 1725, 1200 -> 1275).
    """
    new_rating = RATING_CARRY * rating + (1 - RATING_CARRY) * BASE_RATING
    new_rd = min(rd + RD_INFLATION, MAX_RD)
    return new_rating, new_rd


@dataclass
class SoftResetResult:
    year: int
    month: int
    applied: bool
    competitors_reset: int = 0


async def is_applied(db: AsyncSession, year: int, month: int) -> bool:
    result = await db.execute(
        select(SoftResetLog.id).where(SoftResetLog.year == year, SoftResetLog.month == month)
    )
    return result.scalar_one_or_none() is not None


async def apply_monthly_soft_reset(
    db: AsyncSession, year: int, month: int, now: Optional[datetime] = None
) -> SoftResetResult:
    """Apply the soft reset for ``year``/``month`` exactly once.

    The marker row and the rating changes commit together; a second call
    for the same month (or a concurrent one losing the unique-key race)
    is a no-op. Volatility and lifetime race counts are untouched.
    """
    now = now or local_now_naive()
    if await is_applied(db, year, month):
        logger.info(f"Soft reset for {year}-{month:02d} already applied, skipping")
        return SoftResetResult(year, month, applied=False)

    store = RatingStore(db)
    competitors = await store.get_competitors()
    counts = await store.recent_race_counts(now)

    try:
        db.add(SoftResetLog(year=year, month=month, competitors_reset=len(competitors), applied_at=now))
        await db.flush()

        for competitor in competitors:
            competitor.rating, competitor.rd = soft_reset(competitor.rating, competitor.rd)
            competitor.race_count_30d = counts.get(competitor.id, 0)

        await store.bump_version()
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(f"Soft reset for {year}-{month:02d} applied concurrently, skipping")
        return SoftResetResult(year, month, applied=False)

    log_soft_reset(year, month, len(competitors))
    return SoftResetResult(year, month, applied=True, competitors_reset=len(competitors))
