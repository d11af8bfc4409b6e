"""Rating store: competitor ratings, race counters and versioned snapshots."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from podium.config import local_now_naive
from podium.models.competitor import Competitor, Race, RaceResult, RaceStatus, RatingState
from podium.rating.eligibility import ineligibility_reason, window_start
from podium.rating.glicko import Rating

logger = logging.getLogger(__name__)

STATE_ID = "store"


def generate_competitor_id() -> str:
    """Generate a unique competitor ID."""
    return f"cmp_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class CompetitorRating:
    """Read-only view of one competitor inside a snapshot."""

    competitor_id: str
    name: str
    rating: Rating
    race_count_lifetime: int
    race_count_30d: int

    @property
    def ineligibility_reason(self) -> Optional[str]:
        return ineligibility_reason(self.race_count_lifetime, self.race_count_30d)

    @property
    def is_eligible(self) -> bool:
        return self.ineligibility_reason is None


@dataclass(frozen=True)
class RatingSnapshot:
    """Immutable copy of the rating store taken at one instant.

    Computations read a snapshot once up front and never go back to the
    live tables, so a concurrent race ingestion can't change their inputs
    half-way through.
    """

    version: int
    taken_at: datetime
    competitors: dict[str, CompetitorRating] = field(default_factory=dict)

    def eligible(self) -> list[CompetitorRating]:
        """Eligible competitors in a stable (id) order."""
        return [c for _, c in sorted(self.competitors.items()) if c.is_eligible]


class RatingStore:
    """Service wrapping competitor ratings and the store version."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_competitor(self, name: str, competitor_id: Optional[str] = None) -> Competitor:
        """Register a competitor with the default rating triple."""
        competitor = Competitor(id=competitor_id or generate_competitor_id(), name=name)
        self.db.add(competitor)
        await self.db.commit()
        await self.db.refresh(competitor)
        return competitor

    async def get_competitor(self, competitor_id: str) -> Optional[Competitor]:
        result = await self.db.execute(select(Competitor).where(Competitor.id == competitor_id))
        return result.scalar_one_or_none()

    async def get_competitors(self, competitor_ids: Optional[Iterable[str]] = None) -> list[Competitor]:
        query = select(Competitor).order_by(Competitor.id)
        if competitor_ids is not None:
            query = query.where(Competitor.id.in_(list(competitor_ids)))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_version(self) -> int:
        result = await self.db.execute(select(RatingState.version).where(RatingState.id == STATE_ID))
        return result.scalar_one_or_none() or 0

    async def bump_version(self) -> int:
        """Increment the store version inside the caller's transaction."""
        result = await self.db.execute(select(RatingState).where(RatingState.id == STATE_ID))
        state = result.scalar_one_or_none()
        if state is None:
            state = RatingState(id=STATE_ID, version=0)
            self.db.add(state)
        state.version = (state.version or 0) + 1
        await self.db.flush()
        return state.version

    async def recent_race_counts(
        self, now: datetime, competitor_ids: Optional[Iterable[str]] = None
    ) -> dict[str, int]:
        """Rated races per competitor in the trailing window ending at ``now``."""
        query = (
            select(RaceResult.competitor_id, func.count(RaceResult.id))
            .join(Race)
            .where(Race.status == RaceStatus.RATED.value)
            .where(Race.played_at >= window_start(now))
            .where(Race.played_at <= now)
            .group_by(RaceResult.competitor_id)
        )
        if competitor_ids is not None:
            query = query.where(RaceResult.competitor_id.in_(list(competitor_ids)))
        result = await self.db.execute(query)
        return {row[0]: row[1] for row in result.all()}

    async def refresh_recent_counts(self, now: Optional[datetime] = None) -> int:
        """Recompute the cached 30-day race counts from the race log."""
        now = now or local_now_naive()
        counts = await self.recent_race_counts(now)
        competitors = await self.get_competitors()
        changed = 0
        for competitor in competitors:
            count = counts.get(competitor.id, 0)
            if competitor.race_count_30d != count:
                competitor.race_count_30d = count
                changed += 1
        await self.db.flush()
        return changed

    async def snapshot(self, now: Optional[datetime] = None) -> RatingSnapshot:
        """Take a consistent, immutable snapshot of every competitor."""
        now = now or local_now_naive()
        version = await self.get_version()
        counts = await self.recent_race_counts(now)
        competitors = await self.get_competitors()
        return RatingSnapshot(
            version=version,
            taken_at=now,
            competitors={
                c.id: CompetitorRating(
                    competitor_id=c.id,
                    name=c.name,
                    rating=Rating(c.rating, c.rd, c.volatility),
                    race_count_lifetime=c.race_count_lifetime,
                    race_count_30d=counts.get(c.id, 0),
                )
                for c in competitors
            },
        )
