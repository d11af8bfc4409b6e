"""Shared test fixtures for Podium."""

from datetime import date, datetime, timedelta
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from podium.betting.cycle import WeeklyBettingCycle, opens_at
from podium.events import event_bus
from podium.models import (  # noqa: F401  (registers every table on Base)
    Base,
    BettingWeek,
    BettingWeekStatus,
    Bettor,
    Competitor,
    CompetitorOdds,
    OddsSnapshot,
    Race,
    RaceResult,
)
from podium.models.competitor import RaceStatus

# Second week of November 2026: Monday the 9th, so an OPEN betting week
# (November's calibration week is the one starting Monday the 2nd).
OPEN_MONDAY = date(2026, 11, 9)
CALIBRATION_MONDAY = date(2026, 11, 2)


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest.fixture(autouse=True)
def clean_event_bus():
    """Start each test with no recorded events."""
    event_bus.clear()
    yield
    event_bus.clear()


@pytest.fixture
def open_monday() -> date:
    return OPEN_MONDAY


@pytest.fixture
def during_open_week() -> datetime:
    """Tuesday noon of the open week."""
    return opens_at(OPEN_MONDAY) + timedelta(days=1, hours=12)


@pytest.fixture
def make_competitor(db_session: AsyncSession):
    """Factory creating a competitor with an activity history.

    ``recent_races`` placeholder races are logged a few days before the
    reference time so the 30-day window counts them; the rest of the
    lifetime count is set directly.
    """

    async def _make(
        competitor_id: str,
        rating: float = 1500.0,
        rd: float = 80.0,
        lifetime: int = 10,
        recent_races: int = 2,
        reference: Optional[datetime] = None,
    ) -> Competitor:
        reference = reference or opens_at(OPEN_MONDAY)
        competitor = Competitor(
            id=competitor_id,
            name=competitor_id.upper(),
            rating=rating,
            rd=rd,
            volatility=0.06,
            race_count_lifetime=lifetime,
            race_count_30d=recent_races,
        )
        db_session.add(competitor)
        await db_session.flush()
        for i in range(recent_races):
            race_id = f"history-{competitor_id}-{i}"
            db_session.add(
                Race(
                    id=race_id,
                    played_at=reference - timedelta(days=3 + i),
                    status=RaceStatus.RATED.value,
                )
            )
            db_session.add(
                RaceResult(
                    race_id=race_id,
                    competitor_id=competitor_id,
                    rank=1,
                    rating_before=rating,
                    rating_after=rating,
                    rd_before=rd,
                    rd_after=rd,
                    volatility_after=0.06,
                )
            )
        await db_session.commit()
        return competitor

    return _make


@pytest.fixture
def make_bettor(db_session: AsyncSession):
    async def _make(user_id: str, display_name: Optional[str] = None, **fields) -> Bettor:
        bettor = Bettor(id=user_id, display_name=display_name or user_id.title(), **fields)
        db_session.add(bettor)
        await db_session.commit()
        return bettor

    return _make


@pytest.fixture
def make_week(db_session: AsyncSession):
    """Factory creating the betting week that starts on ``monday``."""

    async def _make(monday: date = OPEN_MONDAY, now: Optional[datetime] = None) -> BettingWeek:
        return await WeeklyBettingCycle(db_session).ensure_week(monday, now or opens_at(monday))

    return _make


@pytest.fixture
def make_snapshot(db_session: AsyncSession):
    """Factory writing an odds snapshot with fixed odds.

    ``odds`` maps competitor id -> (odd_first, odd_second, odd_third).
    """

    async def _make(week_id: str, odds: dict, computed_at: datetime) -> OddsSnapshot:
        snapshot = OddsSnapshot(
            week_id=week_id,
            rating_version=0,
            trigger="manual",
            trials=0,
            computed_at=computed_at,
        )
        db_session.add(snapshot)
        await db_session.flush()
        for competitor_id, (first, second, third) in odds.items():
            db_session.add(
                CompetitorOdds(
                    snapshot_id=snapshot.id,
                    week_id=week_id,
                    competitor_id=competitor_id,
                    odd_first=first,
                    odd_second=second,
                    odd_third=third,
                    probability=1 / first,
                    prob_first=1 / first,
                    prob_second=1 / second,
                    prob_third=1 / third,
                    rating=1500.0,
                    rd=80.0,
                    computed_at=computed_at,
                )
            )
        await db_session.commit()
        return snapshot

    return _make
