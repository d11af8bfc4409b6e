"""Tests for the race pipeline, scheduled jobs and scheduler registration."""

from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from podium.betting.cycle import closes_at, finalizes_at, opens_at
from podium.config import LOCAL_TZ
from podium.models.betting import BettingWeekStatus, OddsSnapshot
from podium.odds.engine import RecomputeTrigger
from podium.odds.worker import OddsRecomputeWorker
from podium.pipeline import process_race
from podium.progress.bettors import get_bettor
from podium.rating.store import RatingStore
from podium.rating.updater import RaceResultIn
from podium.scheduler.activity_log import activity_log
from podium.scheduler.jobs import (
    JobType,
    close_week_job,
    expire_play_streaks_job,
    finalize_week_job,
    monthly_rollover_job,
    open_week_job,
)
from podium.scheduler.manager import SchedulerManager

OPEN_MONDAY = date(2026, 11, 9)


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def job_sessions(session_factory):
    """Point the jobs' session factory at the test database."""
    with patch("podium.models.database.async_session", session_factory):
        yield session_factory


class TestProcessRace:
    @pytest.mark.asyncio
    async def test_rates_race_and_queues_recompute(
        self, db_session, session_factory, make_competitor, make_bettor, make_week, during_open_week
    ):
        await make_competitor("a")
        await make_competitor("b")
        await make_bettor("racer", competitor_id="a")
        week = await make_week()
        worker = OddsRecomputeWorker(session_factory)

        update = await process_race(
            db_session,
            "r1",
            [RaceResultIn("a", 1), RaceResultIn("b", 2)],
            played_at=during_open_week,
            worker=worker,
            now=during_open_week,
        )

        assert update.rating_version == 1
        # Already pending for this week
        assert worker.request(week.id, RecomputeTrigger.RACE) is False
        racer = await get_bettor(db_session, "racer")
        assert racer.current_play_streak == 1
        assert racer.last_play_date == during_open_week.date()

    @pytest.mark.asyncio
    async def test_finalized_week_is_not_repriced(
        self, db_session, session_factory, make_competitor, make_week, during_open_week
    ):
        await make_competitor("a")
        await make_competitor("b")
        week = await make_week()
        week.status = BettingWeekStatus.FINALIZED.value
        await db_session.commit()
        worker = OddsRecomputeWorker(session_factory)

        late = finalizes_at(week.start_date) + timedelta(hours=1)
        await process_race(
            db_session, "r1", [RaceResultIn("a", 2), RaceResultIn("b", 1)], played_at=late, worker=worker, now=late
        )

        assert worker.request(week.id, RecomputeTrigger.RACE) is True


class TestWeeklyJobs:
    @pytest.mark.asyncio
    async def test_full_week(self, db_session, job_sessions):
        opened = await open_week_job(opens_at(OPEN_MONDAY) + timedelta(minutes=5))
        assert opened["errors"] == []
        assert opened["week_id"] == "2026-W46"
        assert opened["status"] == "open"
        assert opened["snapshot_id"] is not None

        closed = await close_week_job(closes_at(OPEN_MONDAY))
        assert closed["errors"] == []
        assert closed["closed"] is True

        finalized = await finalize_week_job(finalizes_at(OPEN_MONDAY))
        assert finalized["errors"] == []
        assert finalized["bets_settled"] == 0
        assert finalized["podium"] == [None, None, None]

        snapshots = await db_session.execute(
            select(OddsSnapshot.trigger).where(OddsSnapshot.week_id == "2026-W46").order_by(OddsSnapshot.id)
        )
        assert snapshots.scalars().all() == ["week_open", "pre_finalize"]

    @pytest.mark.asyncio
    async def test_missed_close_is_caught_up(self, db_session, job_sessions):
        await open_week_job(opens_at(OPEN_MONDAY))

        finalized = await finalize_week_job(finalizes_at(OPEN_MONDAY))

        assert finalized["errors"] == []
        assert finalized["week_id"] == "2026-W46"

    @pytest.mark.asyncio
    async def test_calibration_week_opens_as_calibration(self, job_sessions):
        result = await open_week_job(datetime(2026, 12, 7, 0, 5))
        assert result["status"] == "calibration"

    @pytest.mark.asyncio
    async def test_job_failure_is_recorded(self, job_sessions):
        activity_log.clear()
        with patch("podium.seasons.archive.monthly_rollover", side_effect=RuntimeError("disk full")):
            result = await monthly_rollover_job(datetime(2026, 12, 1))

        assert result["errors"] == ["disk full"]
        [entry] = [e for e in activity_log.get_entries() if e["status"] == "error"]
        assert "disk full" in entry["message"]

    @pytest.mark.asyncio
    async def test_monthly_rollover(self, db_session, job_sessions, make_competitor):
        await make_competitor("a", rating=1700)

        result = await monthly_rollover_job(datetime(2026, 12, 1))

        assert result["errors"] == []
        assert result["archived"] == "season_2026_11"
        assert result["soft_reset_applied"] is True

    @pytest.mark.asyncio
    async def test_daily_maintenance_refreshes_race_counts(self, db_session, job_sessions, make_competitor):
        await make_competitor("a")

        result = await expire_play_streaks_job(datetime(2026, 12, 10, 0, 10))

        assert result["errors"] == []
        assert result["counts_refreshed"] == 1
        a = await RatingStore(db_session).get_competitor("a")
        await db_session.refresh(a)
        assert a.race_count_30d == 0


class TestSchedulerManager:
    def test_betting_jobs_registered(self):
        manager = SchedulerManager()

        registered = manager.setup_betting_jobs()

        assert set(registered) == {job.value for job in JobType}
        finalize = manager.get_job(JobType.FINALIZE_WEEK.value)
        assert isinstance(finalize.trigger, CronTrigger)
        status = manager.get_status()
        assert status["running"] is False
        assert len(status["jobs"]) == 5

    def test_cron_jobs_use_local_timezone(self):
        manager = SchedulerManager()

        manager.setup_betting_jobs()

        close = manager.get_job(JobType.CLOSE_WEEK.value)
        assert str(close.trigger.timezone) == str(LOCAL_TZ)
        fields = {f.name: str(f) for f in close.trigger.fields}
        assert (fields["day_of_week"], fields["hour"], fields["minute"]) == ("thu", "23", "59")
