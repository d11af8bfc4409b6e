"""Race ingestion: apply Glicko-2 updates for one race's results."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from podium.config import local_now_naive, settings
from podium.errors import RaceIngestionError
from podium.models.competitor import Race, RaceResult, RaceStatus
from podium.rating.glicko import Finish, Rating, rate_race
from podium.rating.store import RatingStore
from podium.scheduler.activity_log import log_race_failed, log_race_rated

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 3

# Races are rated one at a time so every race sees one consistent
# pre-race snapshot and no competitor's triple is written twice at once.
_ingestion_lock = asyncio.Lock()


@dataclass(frozen=True)
class RaceResultIn:
    """Incoming result line from race ingestion."""

    competitor_id: str
    rank: int
    score: Optional[float] = None


@dataclass
class RaceUpdate:
    """Outcome of rating one race."""

    race_id: str
    played_at: datetime
    rating_version: int
    before: dict[str, Rating] = field(default_factory=dict)
    after: dict[str, Rating] = field(default_factory=dict)

    @property
    def competitor_ids(self) -> list[str]:
        return sorted(self.after)

    def delta(self, competitor_id: str) -> float:
        return self.after[competitor_id].rating - self.before[competitor_id].rating


def validate_results(race_id: str, results: Sequence[RaceResultIn]) -> None:
    """Reject malformed race input before anything is written."""
    if len(results) < 2:
        raise RaceIngestionError(race_id, "a race needs at least two competitors")
    ids = [r.competitor_id for r in results]
    if len(set(ids)) != len(ids):
        raise RaceIngestionError(race_id, "a competitor appears more than once")
    for r in results:
        if not isinstance(r.rank, int) or isinstance(r.rank, bool) or r.rank < 1:
            raise RaceIngestionError(race_id, f"invalid rank {r.rank!r} for {r.competitor_id}")
        if r.rank > len(results):
            raise RaceIngestionError(race_id, f"rank {r.rank} exceeds field size {len(results)}")


class RatingUpdater:
    """Applies race results to the rating store."""

    def __init__(self, db: AsyncSession, tau: Optional[float] = None):
        self.db = db
        self.tau = tau if tau is not None else settings.glicko_tau
        self.store = RatingStore(db)

    async def ingest_race(
        self,
        race_id: str,
        results: Sequence[RaceResultIn],
        played_at: Optional[datetime] = None,
    ) -> RaceUpdate:
        """Rate a race and commit it, or record it as failed and raise.

        A race with an unknown competitor is rejected as a whole: skipping
        one participant would corrupt everyone else's pairwise results.
        Failed races are not retried automatically.
        """
        played_at = played_at or local_now_naive()
        async with _ingestion_lock:
            existing = await self._get_race(race_id)
            if existing is not None and existing.status == RaceStatus.RATED.value:
                raise RaceIngestionError(race_id, "race already rated")

            for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
                try:
                    update = await self._apply(race_id, list(results), played_at)
                except StaleDataError:
                    await self.db.rollback()
                    logger.warning(f"Rating conflict on race {race_id} (attempt {attempt}), retrying")
                    continue
                except RaceIngestionError as e:
                    await self.db.rollback()
                    await self._record_failure(race_id, played_at, e.reason)
                    raise
                except Exception as e:
                    logger.error(f"Rating update failed for race {race_id}: {e}")
                    await self.db.rollback()
                    await self._record_failure(race_id, played_at, str(e))
                    raise RaceIngestionError(race_id, str(e)) from e

                log_race_rated(race_id, len(update.after), update.rating_version)
                return update

            reason = f"rating conflicts persisted after {MAX_CONFLICT_RETRIES} attempts"
            await self._record_failure(race_id, played_at, reason)
            raise RaceIngestionError(race_id, reason)

    async def _apply(
        self, race_id: str, results: list[RaceResultIn], played_at: datetime
    ) -> RaceUpdate:
        validate_results(race_id, results)

        ids = [r.competitor_id for r in results]
        competitors = {c.id: c for c in await self.store.get_competitors(ids)}
        missing = sorted(set(ids) - set(competitors))
        if missing:
            raise RaceIngestionError(race_id, f"unknown competitors: {', '.join(missing)}")

        before = {
            cid: Rating(c.rating, c.rd, c.volatility) for cid, c in competitors.items()
        }
        after = rate_race(
            before,
            [Finish(r.competitor_id, r.rank) for r in results],
            tau=self.tau,
        )

        # A previously failed attempt is replaced by this one
        failed = await self._get_race(race_id)
        if failed is not None:
            await self.db.delete(failed)
            await self.db.flush()

        race = Race(id=race_id, played_at=played_at, status=RaceStatus.RATED.value)
        self.db.add(race)

        for r in results:
            competitor = competitors[r.competitor_id]
            new = after[r.competitor_id]
            self.db.add(
                RaceResult(
                    race_id=race_id,
                    competitor_id=r.competitor_id,
                    rank=r.rank,
                    score=r.score,
                    rating_before=competitor.rating,
                    rating_after=new.rating,
                    rd_before=competitor.rd,
                    rd_after=new.rd,
                    volatility_after=new.volatility,
                )
            )
            competitor.rating = new.rating
            competitor.rd = new.rd
            competitor.volatility = new.volatility
            competitor.race_count_lifetime += 1
            if competitor.last_race_at is None or played_at > competitor.last_race_at:
                competitor.last_race_at = played_at

        await self.db.flush()

        counts = await self.store.recent_race_counts(played_at, ids)
        for cid, competitor in competitors.items():
            competitor.race_count_30d = counts.get(cid, 0)

        version = await self.store.bump_version()
        race.rating_version = version
        await self.db.commit()

        logger.info(f"Rated race {race_id}: {len(results)} competitors, store v{version}")
        return RaceUpdate(
            race_id=race_id,
            played_at=played_at,
            rating_version=version,
            before=before,
            after=after,
        )

    async def _get_race(self, race_id: str) -> Optional[Race]:
        result = await self.db.execute(select(Race).where(Race.id == race_id))
        return result.scalar_one_or_none()

    async def _record_failure(self, race_id: str, played_at: datetime, reason: str) -> None:
        """Persist the rejected race so an operator can see and retry it."""
        race = await self._get_race(race_id)
        if race is None:
            race = Race(id=race_id, played_at=played_at)
            self.db.add(race)
        race.status = RaceStatus.FAILED.value
        race.failure_reason = reason
        await self.db.commit()
        log_race_failed(race_id, reason)

    async def get_failed_races(self) -> list[Race]:
        result = await self.db.execute(
            select(Race).where(Race.status == RaceStatus.FAILED.value).order_by(Race.played_at)
        )
        return list(result.scalars().all())
