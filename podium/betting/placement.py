"""Bet placement, cancellation and history."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from podium.betting.cycle import WeeklyBettingCycle, is_betting_open
from podium.config import local_now_naive
from podium.errors import (
    BetNotFound,
    BoostAlreadyUsed,
    CompetitorIneligible,
    DuplicateBet,
    InvalidPickSet,
    WeekNotOpen,
)
from podium.events import event_bus
from podium.models.betting import Bet, BetPick, BetPosition, BetStatus
from podium.odds.engine import OddsEngine
from podium.progress.bettors import require_bettor
from podium.progress.streaks import StreakTracker, month_key
from podium.progress.xp import XP_BET_PLACED, XpSource, award_xp
from podium.rating.store import RatingStore

logger = logging.getLogger(__name__)

PICKS_PER_BET = 3
UNKNOWN_COMPETITOR = "unknown"
NOT_PRICED = "not_priced"  # eligible but missing from the latest odds snapshot


def generate_bet_id() -> str:
    """Generate a unique bet ID."""
    return f"bet_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class PickIn:
    competitor_id: str
    position: BetPosition
    has_boost: bool = False


@dataclass
class BetHistoryPage:
    bets: list[Bet] = field(default_factory=list)
    total: int = 0
    limit: int = 20
    offset: int = 0

    def to_dict(self) -> dict:
        return {
            "bets": [b.to_dict() for b in self.bets],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


def validate_picks(picks: Sequence[PickIn]) -> list[PickIn]:
    """Normalize positions and check the shape of a pick set."""
    if len(picks) != PICKS_PER_BET:
        raise InvalidPickSet(f"A bet needs exactly {PICKS_PER_BET} picks, got {len(picks)}")
    try:
        normalized = [
            PickIn(p.competitor_id, BetPosition(p.position), bool(p.has_boost)) for p in picks
        ]
    except ValueError as e:
        raise InvalidPickSet(str(e)) from e
    if len({p.competitor_id for p in normalized}) != PICKS_PER_BET:
        raise InvalidPickSet("The same competitor is picked more than once")
    if {p.position for p in normalized} != set(BetPosition):
        raise InvalidPickSet("Each of first, second and third must be picked once")
    if sum(1 for p in normalized if p.has_boost) > 1:
        raise InvalidPickSet("Only one pick can be boosted")
    return sorted(normalized, key=lambda p: p.position.rank)


class BetService:
    """Places and manages bets for the weekly podium."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def place_bet(
        self,
        user_id: str,
        week_id: str,
        picks: Sequence[PickIn],
        now: Optional[datetime] = None,
    ) -> Bet:
        """Validate and record a bet in one transaction.

        Odds are locked from the latest completed snapshot at placement.
        Consuming the boost, the betting streak and the placement XP are
        committed together with the bet or not at all.
        """
        now = now or local_now_naive()
        bettor = await require_bettor(self.db, user_id)

        week = await WeeklyBettingCycle(self.db).require_week(week_id)
        if not is_betting_open(week, now):
            raise WeekNotOpen(f"Week {week_id} is {week.status}, betting is closed")

        picks = validate_picks(picks)

        if await self.get_user_bet(user_id, week_id) is not None:
            raise DuplicateBet(f"User {user_id} already has a bet for week {week_id}")

        ratings = await RatingStore(self.db).snapshot(now)
        for pick in picks:
            competitor = ratings.competitors.get(pick.competitor_id)
            if competitor is None:
                raise CompetitorIneligible(pick.competitor_id, UNKNOWN_COMPETITOR)
            if not competitor.is_eligible:
                raise CompetitorIneligible(pick.competitor_id, competitor.ineligibility_reason)

        odds = await OddsEngine(self.db).get_latest_odds_map(week_id)
        for pick in picks:
            if (pick.competitor_id, pick.position) not in odds:
                raise CompetitorIneligible(pick.competitor_id, NOT_PRICED)

        boosted = any(p.has_boost for p in picks)
        if boosted and bettor.boost_used_month == month_key(now):
            raise BoostAlreadyUsed(f"Boost already used in {month_key(now)}")

        bet = Bet(
            id=generate_bet_id(),
            user_id=user_id,
            week_id=week_id,
            placed_at=now,
            status=BetStatus.PENDING.value,
        )
        bet.picks = [
            BetPick(
                competitor_id=p.competitor_id,
                position=p.position.value,
                odd_at_bet=odds[(p.competitor_id, p.position)],
                has_boost=p.has_boost,
            )
            for p in picks
        ]
        self.db.add(bet)
        if boosted:
            bettor.boost_used_month = month_key(now)
        StreakTracker(self.db).on_bet_placed(bettor, week)

        try:
            await self.db.flush()
            # Keyed on the week so cancelling and re-betting earns nothing extra
            level_up = await award_xp(self.db, bettor, XpSource.BET_PLACED, week_id, XP_BET_PLACED)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateBet(f"User {user_id} already has a bet for week {week_id}") from e

        logger.info(f"Bet {bet.id} placed by {user_id} for week {week_id}")
        if level_up:
            await event_bus.publish(level_up)
        return await self.get_bet(bet.id)

    async def cancel_bet(self, user_id: str, bet_id: str, now: Optional[datetime] = None) -> Bet:
        """Cancel a pending bet while the week is open; the boost is given back."""
        now = now or local_now_naive()
        bet = await self.get_bet(bet_id)
        if bet is None or bet.user_id != user_id or bet.status == BetStatus.CANCELLED.value:
            raise BetNotFound(f"Bet {bet_id} not found")

        week = await WeeklyBettingCycle(self.db).require_week(bet.week_id)
        if bet.status != BetStatus.PENDING.value or not is_betting_open(week, now):
            raise WeekNotOpen(f"Bet {bet_id} can no longer be cancelled")

        bet.status = BetStatus.CANCELLED.value
        if bet.has_boost:
            bettor = await require_bettor(self.db, user_id)
            if bettor.boost_used_month == month_key(bet.placed_at):
                bettor.boost_used_month = None
        await self.db.commit()
        logger.info(f"Bet {bet_id} cancelled by {user_id}")
        return await self.get_bet(bet_id)

    async def get_bet(self, bet_id: str) -> Optional[Bet]:
        result = await self.db.execute(
            select(Bet)
            .where(Bet.id == bet_id)
            .options(selectinload(Bet.picks))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_bet(self, user_id: str, week_id: str) -> Optional[Bet]:
        """The user's non-cancelled bet for a week, if any."""
        result = await self.db.execute(
            select(Bet)
            .where(Bet.user_id == user_id)
            .where(Bet.week_id == week_id)
            .where(Bet.status != BetStatus.CANCELLED.value)
            .options(selectinload(Bet.picks))
        )
        return result.scalar_one_or_none()

    async def get_bet_history(self, user_id: str, limit: int = 20, offset: int = 0) -> BetHistoryPage:
        """Newest first, paginated."""
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        total = await self.db.scalar(select(func.count(Bet.id)).where(Bet.user_id == user_id))
        result = await self.db.execute(
            select(Bet)
            .where(Bet.user_id == user_id)
            .options(selectinload(Bet.picks))
            .order_by(Bet.placed_at.desc(), Bet.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return BetHistoryPage(bets=list(result.scalars().all()), total=total or 0, limit=limit, offset=offset)
