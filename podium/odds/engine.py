"""Odds engine: turns the current rating store into podium odds snapshots."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from podium.config import local_now_naive, settings
from podium.errors import WeekNotFound
from podium.models.betting import (
    BetPosition,
    BettingWeek,
    BettingWeekStatus,
    CompetitorOdds,
    OddsSnapshot,
)
from podium.odds.plackett_luce import podium_probabilities, probability_to_odd
from podium.rating.store import RatingStore
from podium.scheduler.activity_log import log_odds_recomputed

logger = logging.getLogger(__name__)


class RecomputeTrigger:
    WEEK_OPEN = "week_open"
    RACE = "race"
    PRE_FINALIZE = "pre_finalize"
    MANUAL = "manual"


class OddsEngine:
    """Computes and serves odds snapshots for betting weeks."""

    def __init__(
        self,
        db: AsyncSession,
        trials: Optional[int] = None,
        workers: Optional[int] = None,
        seed: Optional[int] = None,
    ):
        self.db = db
        self.trials = trials or settings.monte_carlo_trials
        self.workers = workers or settings.monte_carlo_workers
        self.seed = seed if seed is not None else settings.monte_carlo_seed

    async def recompute(
        self,
        week_id: str,
        trigger: str = RecomputeTrigger.MANUAL,
        now: Optional[datetime] = None,
        seed: Optional[int] = None,
    ) -> Optional[OddsSnapshot]:
        """Compute a fresh snapshot for a week from the latest ratings.

        Ratings and eligibility are read once up front; the simulation runs
        in a worker thread so the event loop keeps serving the previous
        snapshot meanwhile. Finalized weeks are never recomputed.
        """
        now = now or local_now_naive()
        seed = seed if seed is not None else self.seed

        week = await self._get_week(week_id)
        if week is None:
            raise WeekNotFound(f"Week {week_id} not found")
        if week.status == BettingWeekStatus.FINALIZED.value:
            logger.info(f"Week {week_id} is finalized, odds left untouched")
            return None

        ratings = await RatingStore(self.db).snapshot(now)
        eligible = ratings.eligible()

        probabilities = await asyncio.to_thread(
            podium_probabilities,
            {c.competitor_id: c.rating for c in eligible},
            self.trials,
            seed,
            self.workers,
        )
        by_id = {c.competitor_id: c for c in eligible}

        snapshot = OddsSnapshot(
            week_id=week_id,
            rating_version=ratings.version,
            trigger=trigger,
            trials=self.trials,
            seed=seed,
            computed_at=now,
        )
        self.db.add(snapshot)
        await self.db.flush()

        for p in probabilities:
            rating = by_id[p.competitor_id].rating
            self.db.add(
                CompetitorOdds(
                    snapshot_id=snapshot.id,
                    week_id=week_id,
                    competitor_id=p.competitor_id,
                    odd_first=probability_to_odd(p.first),
                    odd_second=probability_to_odd(p.second),
                    odd_third=probability_to_odd(p.third),
                    probability=p.win_probability,
                    prob_first=p.first,
                    prob_second=p.second,
                    prob_third=p.third,
                    rating=rating.rating,
                    rd=rating.rd,
                    is_eligible=True,
                    computed_at=now,
                )
            )

        await self.db.commit()
        log_odds_recomputed(week_id, trigger, len(probabilities))
        return snapshot

    async def get_latest_snapshot(
        self, week_id: str, as_of: Optional[datetime] = None
    ) -> Optional[OddsSnapshot]:
        """Most recent completed snapshot, optionally taken at or before ``as_of``."""
        query = (
            select(OddsSnapshot)
            .where(OddsSnapshot.week_id == week_id)
            .options(selectinload(OddsSnapshot.odds))
            .order_by(OddsSnapshot.computed_at.desc(), OddsSnapshot.id.desc())
            .limit(1)
        )
        if as_of is not None:
            query = query.where(OddsSnapshot.computed_at <= as_of)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_week_odds(self, week_id: str) -> list[CompetitorOdds]:
        """Odds of the last completed snapshot (eligible competitors only)."""
        snapshot = await self.get_latest_snapshot(week_id)
        if snapshot is None:
            return []
        return sorted(
            (o for o in snapshot.odds if o.is_eligible),
            key=lambda o: (o.odd_first, o.competitor_id),
        )

    async def get_latest_odds_map(
        self, week_id: str, as_of: Optional[datetime] = None
    ) -> dict[tuple[str, BetPosition], float]:
        """{(competitor_id, position): odd} from the latest snapshot."""
        snapshot = await self.get_latest_snapshot(week_id, as_of=as_of)
        if snapshot is None:
            return {}
        odds = {}
        for o in snapshot.odds:
            for position in BetPosition:
                odds[(o.competitor_id, position)] = o.odd_for(position)
        return odds

    async def _get_week(self, week_id: str) -> Optional[BettingWeek]:
        result = await self.db.execute(select(BettingWeek).where(BettingWeek.id == week_id))
        return result.scalar_one_or_none()
