"""Tests for the weekly betting cycle."""

import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from podium.betting.cycle import (
    WeeklyBettingCycle,
    can_transition,
    closes_at,
    expected_status,
    finalizes_at,
    is_betting_open,
    is_calibration_week,
    opens_at,
    season_week_number,
    week_id_for,
    week_start,
)
from podium.errors import WeekNotFound
from podium.models import Base
from podium.models.betting import BettingWeek, BettingWeekStatus

OPEN_MONDAY = date(2026, 11, 9)
CALIBRATION_MONDAY = date(2026, 11, 2)


class TestCalendar:
    def test_week_start_is_monday(self):
        assert week_start(date(2026, 11, 12)) == OPEN_MONDAY
        assert week_start(date(2026, 11, 15)) == OPEN_MONDAY
        assert week_start(OPEN_MONDAY) == OPEN_MONDAY

    def test_week_id_uses_iso_year(self):
        assert week_id_for(OPEN_MONDAY) == "2026-W46"
        assert week_id_for(date(2024, 12, 30)) == "2025-W01"

    def test_first_monday_of_month_is_calibration(self):
        assert is_calibration_week(CALIBRATION_MONDAY)
        assert not is_calibration_week(OPEN_MONDAY)
        assert season_week_number(OPEN_MONDAY) == 2
        assert season_week_number(date(2026, 11, 30)) == 5

    def test_monday_on_the_seventh_is_calibration(self):
        # December 2026 starts on a Tuesday, so its first Monday is the 7th
        assert is_calibration_week(date(2026, 12, 7))

    def test_key_times(self):
        assert closes_at(OPEN_MONDAY) == datetime(2026, 11, 12, 23, 59)
        assert finalizes_at(OPEN_MONDAY) == datetime(2026, 11, 15, 20, 0)


class TestExpectedStatus:
    def test_open_until_thursday_close(self):
        assert expected_status(OPEN_MONDAY, opens_at(OPEN_MONDAY)) is BettingWeekStatus.OPEN
        assert expected_status(OPEN_MONDAY, datetime(2026, 11, 12, 23, 58)) is BettingWeekStatus.OPEN
        assert expected_status(OPEN_MONDAY, datetime(2026, 11, 12, 23, 59)) is BettingWeekStatus.CLOSED

    def test_finalized_from_sunday_evening(self):
        assert expected_status(OPEN_MONDAY, datetime(2026, 11, 15, 19, 59)) is BettingWeekStatus.CLOSED
        assert expected_status(OPEN_MONDAY, datetime(2026, 11, 15, 20, 0)) is BettingWeekStatus.FINALIZED

    def test_calibration_week_never_opens(self):
        thursday_night = datetime(2026, 11, 5, 23, 59)
        assert expected_status(CALIBRATION_MONDAY, thursday_night) is BettingWeekStatus.CALIBRATION
        assert expected_status(CALIBRATION_MONDAY, datetime(2026, 11, 8, 20, 0)) is BettingWeekStatus.FINALIZED


class TestTransitions:
    def test_forward_only(self):
        assert can_transition("open", "closed")
        assert can_transition("closed", "finalized")
        assert can_transition("open", "finalized")
        assert not can_transition("closed", "open")
        assert not can_transition("finalized", "closed")
        assert not can_transition("open", "open")

    def test_calibration_only_ends_finalized(self):
        assert can_transition("calibration", "finalized")
        assert not can_transition("calibration", "open")
        assert not can_transition("calibration", "closed")


class TestWeeklyBettingCycle:
    @pytest.mark.asyncio
    async def test_ensure_week_creates_open_week(self, db_session):
        week = await WeeklyBettingCycle(db_session).ensure_week(date(2026, 11, 11), opens_at(OPEN_MONDAY))

        assert week.id == "2026-W46"
        assert week.status == BettingWeekStatus.OPEN.value
        assert week.start_date == OPEN_MONDAY
        assert week.end_date == date(2026, 11, 15)
        assert (week.year, week.month, week.season_week_number) == (2026, 11, 2)

    @pytest.mark.asyncio
    async def test_ensure_week_is_idempotent(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        first = await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))
        second = await cycle.ensure_week(OPEN_MONDAY + timedelta(days=2), opens_at(OPEN_MONDAY))
        assert first is second

    @pytest.mark.asyncio
    async def test_ensure_week_creates_calibration_week(self, db_session):
        week = await WeeklyBettingCycle(db_session).ensure_week(CALIBRATION_MONDAY, opens_at(CALIBRATION_MONDAY))
        assert week.status == BettingWeekStatus.CALIBRATION.value
        assert week.is_calibration_week

    @pytest.mark.asyncio
    async def test_past_week_is_created_unsettled(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        later = datetime(2026, 12, 20, 12, 0)

        week = await cycle.ensure_week(OPEN_MONDAY, later)
        calibration = await cycle.ensure_week(CALIBRATION_MONDAY, later)

        assert week.status == BettingWeekStatus.CLOSED.value
        assert calibration.status == BettingWeekStatus.CALIBRATION.value

    @pytest.mark.asyncio
    async def test_current_week_closes_after_thursday(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))

        friday = datetime(2026, 11, 13, 9, 0)
        week = await cycle.get_current_week(friday)

        assert week.status == BettingWeekStatus.CLOSED.value
        assert not is_betting_open(week, friday)

    @pytest.mark.asyncio
    async def test_advance_stops_short_of_finalized(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        week = await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))

        status = await cycle.advance(week, datetime(2026, 11, 15, 21, 0))

        assert status == BettingWeekStatus.CLOSED.value

    @pytest.mark.asyncio
    async def test_status_never_goes_back(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        week = await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))
        assert await cycle.close_week(week.id) is True

        assert await cycle.transition(week, BettingWeekStatus.OPEN) is False
        assert await cycle.close_week(week.id) is False
        week = await cycle.require_week(week.id)
        assert week.status == BettingWeekStatus.CLOSED.value

    @pytest.mark.asyncio
    async def test_finalized_only_through_settlement(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        week = await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))
        with pytest.raises(ValueError):
            await cycle.transition(week, BettingWeekStatus.FINALIZED)

    @pytest.mark.asyncio
    async def test_betting_window(self, db_session):
        week = await WeeklyBettingCycle(db_session).ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))
        assert is_betting_open(week, opens_at(OPEN_MONDAY))
        assert is_betting_open(week, datetime(2026, 11, 12, 23, 58))
        assert not is_betting_open(week, closes_at(OPEN_MONDAY))
        assert not is_betting_open(week, opens_at(OPEN_MONDAY) - timedelta(minutes=1))

    @pytest.mark.asyncio
    async def test_unknown_week(self, db_session):
        with pytest.raises(WeekNotFound):
            await WeeklyBettingCycle(db_session).close_week("1999-W01")

    @pytest.mark.asyncio
    async def test_weeks_for_month(self, db_session):
        cycle = WeeklyBettingCycle(db_session)
        await cycle.ensure_week(OPEN_MONDAY, opens_at(OPEN_MONDAY))
        await cycle.ensure_week(CALIBRATION_MONDAY, opens_at(OPEN_MONDAY))
        # Monday 26 October belongs to October even though the week ends in November
        await cycle.ensure_week(date(2026, 10, 26), opens_at(OPEN_MONDAY))

        weeks = await cycle.get_weeks_for_month(2026, 11)
        assert [w.start_date for w in weeks] == [CALIBRATION_MONDAY, OPEN_MONDAY]


@pytest.fixture
async def file_sessions(tmp_path):
    """Session factory on a file database, so each session has its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'weeks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestConcurrentWeekCreation:
    @pytest.mark.asyncio
    async def test_parallel_callers_share_one_week(self, file_sessions):
        now = datetime(2026, 11, 10, 12, 0)

        async def current_week():
            async with file_sessions() as db:
                return (await WeeklyBettingCycle(db).get_current_week(now)).id

        assert await asyncio.gather(current_week(), current_week()) == ["2026-W46", "2026-W46"]

        async with file_sessions() as db:
            count = await db.scalar(select(func.count(BettingWeek.id)))
        assert count == 1

    @pytest.mark.asyncio
    async def test_lost_insert_reads_winning_week(self, file_sessions):
        now = opens_at(OPEN_MONDAY)
        async with file_sessions() as db:
            winner = await WeeklyBettingCycle(db).ensure_week(OPEN_MONDAY, now)

        async with file_sessions() as db:
            cycle = WeeklyBettingCycle(db)
            real_get_week = cycle.get_week
            lookups = []

            async def stale_first_read(week_id):
                lookups.append(week_id)
                # First read misses the row the other session just inserted
                if len(lookups) == 1:
                    return None
                return await real_get_week(week_id)

            with patch.object(cycle, "get_week", side_effect=stale_first_read):
                week = await cycle.ensure_week(OPEN_MONDAY, now)

        assert week.id == winner.id
        assert week.status == BettingWeekStatus.OPEN.value
        assert lookups == ["2026-W46", "2026-W46"]
