"""Weekly betting cycle: calendar rules and one-directional status changes.

    CALIBRATION  first week of the month (Monday on the 1st-7th), no betting
    OPEN         Monday 00:00 -> Thursday 23:59
    CLOSED       Thursday 23:59 -> Sunday 20:00, races go on, no new bets
    FINALIZED    Sunday 20:00 onward, settled exactly once

A week belongs to the month of its Monday, so the soft reset on the 1st
always happens before that month's calibration week starts.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from podium.config import local_now_naive
from podium.errors import WeekNotFound
from podium.models.betting import BettingWeek, BettingWeekStatus
from podium.scheduler.activity_log import log_week_transition

logger = logging.getLogger(__name__)

CLOSE_TIME = time(23, 59)  # Thursday
FINALIZE_TIME = time(20, 0)  # Sunday

_STATUS_ORDER = {
    BettingWeekStatus.CALIBRATION.value: 0,
    BettingWeekStatus.OPEN.value: 0,
    BettingWeekStatus.CLOSED.value: 1,
    BettingWeekStatus.FINALIZED.value: 2,
}


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def week_id_for(monday: date) -> str:
    iso_year, iso_week, _ = monday.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def season_week_number(monday: date) -> int:
    """1 for the month's first week (its calibration week), then 2, 3, ..."""
    return (monday.day - 1) // 7 + 1


def is_calibration_week(monday: date) -> bool:
    return season_week_number(monday) == 1


def opens_at(monday: date) -> datetime:
    return datetime.combine(monday, time(0, 0))


def closes_at(monday: date) -> datetime:
    return datetime.combine(monday + timedelta(days=3), CLOSE_TIME)


def finalizes_at(monday: date) -> datetime:
    return datetime.combine(monday + timedelta(days=6), FINALIZE_TIME)


def expected_status(monday: date, now: datetime) -> BettingWeekStatus:
    """Status the week should have at ``now`` according to the calendar."""
    if now >= finalizes_at(monday):
        return BettingWeekStatus.FINALIZED
    if is_calibration_week(monday):
        return BettingWeekStatus.CALIBRATION
    if now >= closes_at(monday):
        return BettingWeekStatus.CLOSED
    return BettingWeekStatus.OPEN


def can_transition(old: str, new: str) -> bool:
    """Statuses only move forward; CALIBRATION can only end in FINALIZED."""
    if old == BettingWeekStatus.CALIBRATION.value and new != BettingWeekStatus.FINALIZED.value:
        return False
    return _STATUS_ORDER[new] > _STATUS_ORDER[old]


def is_betting_open(week: BettingWeek, now: datetime) -> bool:
    return (
        week.status == BettingWeekStatus.OPEN.value
        and opens_at(week.start_date) <= now < closes_at(week.start_date)
    )


class WeeklyBettingCycle:
    """Creates betting weeks and moves them through their lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_week(self, week_id: str) -> Optional[BettingWeek]:
        result = await self.db.execute(select(BettingWeek).where(BettingWeek.id == week_id))
        return result.scalar_one_or_none()

    async def require_week(self, week_id: str) -> BettingWeek:
        week = await self.get_week(week_id)
        if week is None:
            raise WeekNotFound(f"Week {week_id} not found")
        return week

    async def ensure_week(self, day: date, now: Optional[datetime] = None) -> BettingWeek:
        """Get or create the week containing ``day``."""
        monday = week_start(day)
        week_id = week_id_for(monday)
        week = await self.get_week(week_id)
        if week is not None:
            return week

        now = now or local_now_naive()
        status = expected_status(monday, now)
        if status is BettingWeekStatus.FINALIZED:
            # A past week is created unsettled; finalization goes through settlement
            status = (
                BettingWeekStatus.CALIBRATION if is_calibration_week(monday) else BettingWeekStatus.CLOSED
            )
        iso_year, iso_week, _ = monday.isocalendar()
        week = BettingWeek(
            id=week_id,
            iso_year=iso_year,
            week_number=iso_week,
            year=monday.year,
            month=monday.month,
            season_week_number=season_week_number(monday),
            start_date=monday,
            end_date=monday + timedelta(days=6),
            status=status.value,
        )
        self.db.add(week)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another session created it between our read and insert
            await self.db.rollback()
            week = await self.get_week(week_id)
            if week is None:
                raise
            return week
        await self.db.refresh(week)
        logger.info(f"Created betting week {week_id} ({status.value})")
        return week

    async def get_current_week(self, now: Optional[datetime] = None) -> BettingWeek:
        """The week containing ``now``, created and brought up to date if needed."""
        now = now or local_now_naive()
        week = await self.ensure_week(now.date(), now)
        await self.advance(week, now)
        return week

    async def transition(self, week: BettingWeek, new_status: BettingWeekStatus) -> bool:
        """Compare-and-set the week's status. Returns False if it lost the race.

        FINALIZED is not reachable from here; it is set by settlement in
        the same transaction that settles the bets.
        """
        if new_status is BettingWeekStatus.FINALIZED:
            raise ValueError("Use the settlement engine to finalize a week")
        old_status = week.status
        if not can_transition(old_status, new_status.value):
            return False
        result = await self.db.execute(
            update(BettingWeek)
            .where(BettingWeek.id == week.id, BettingWeek.status == old_status)
            .values(status=new_status.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            await self.db.refresh(week)
            return False
        week.status = new_status.value
        log_week_transition(week.id, old_status, new_status.value)
        return True

    async def advance(self, week: BettingWeek, now: Optional[datetime] = None) -> str:
        """Apply calendar-driven transitions short of finalization."""
        now = now or local_now_naive()
        target = expected_status(week.start_date, now)
        if target is BettingWeekStatus.FINALIZED:
            if week.status == BettingWeekStatus.OPEN.value:
                await self.transition(week, BettingWeekStatus.CLOSED)
            return week.status
        if can_transition(week.status, target.value):
            await self.transition(week, target)
        return week.status

    async def close_week(self, week_id: str) -> bool:
        week = await self.require_week(week_id)
        return await self.transition(week, BettingWeekStatus.CLOSED)

    async def get_weeks_for_month(self, year: int, month: int) -> list[BettingWeek]:
        result = await self.db.execute(
            select(BettingWeek)
            .where(BettingWeek.year == year, BettingWeek.month == month)
            .order_by(BettingWeek.start_date)
        )
        return list(result.scalars().all())
