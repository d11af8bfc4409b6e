"""Bet settlement: score a finalized week's bets against its final podium.

For each pick:
    locked odd   max(odd at bet, odd in the last snapshot before finalization)
    points       locked odd x2 if boosted, at least 0.1, when the position is exact
Bet points are the sum of its picks, doubled again for a perfect podium.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from podium.betting.cycle import WeeklyBettingCycle, finalizes_at, opens_at
from podium.config import local_now_naive
from podium.errors import BetNotFound, SettlementPreconditionError
from podium.events import BetFinalized, Event, event_bus
from podium.models.betting import Bet, BetPosition, BetStatus, BettingWeek, BettingWeekStatus
from podium.models.bettor import Bettor
from podium.odds.engine import OddsEngine
from podium.progress.streaks import StreakTracker
from podium.progress.xp import XP_CORRECT_PICK, XP_PERFECT_PODIUM, XpSource, award_xp
from podium.scheduler.activity_log import log_settlement
from podium.seasons.archive import SeasonService
from podium.seasons.rankings import CompetitorStanding, RankingService

logger = logging.getLogger(__name__)

MIN_CORRECT_POINTS = 0.1
BOOST_MULTIPLIER = 2
PERFECT_PODIUM_MULTIPLIER = 2


@dataclass(frozen=True)
class PickScore:
    is_correct: bool
    locked_odd: float
    used_bog_odd: bool
    points: float


@dataclass(frozen=True)
class BetScore:
    picks: tuple[PickScore, ...]
    raw_points: float  # before the perfect-podium bonus
    is_perfect_podium: bool
    points: float
    status: BetStatus


def score_pick(
    picked: BetPosition,
    actual: Optional[BetPosition],
    odd_at_bet: float,
    latest_odd: Optional[float],
    has_boost: bool = False,
) -> PickScore:
    """Score one pick. A competitor missing from the final snapshot keeps its locked odd."""
    if latest_odd is not None and latest_odd > odd_at_bet:
        locked_odd, used_bog = latest_odd, True
    else:
        locked_odd, used_bog = odd_at_bet, False

    is_correct = actual is not None and BetPosition(picked) is BetPosition(actual)
    points = 0.0
    if is_correct:
        multiplier = BOOST_MULTIPLIER if has_boost else 1
        points = round(max(locked_odd * multiplier, MIN_CORRECT_POINTS), 2)
    return PickScore(is_correct=is_correct, locked_odd=locked_odd, used_bog_odd=used_bog, points=points)


def score_bet(picks: Sequence[PickScore]) -> BetScore:
    raw_points = round(sum(p.points for p in picks), 2)
    is_perfect = len(picks) == 3 and all(p.is_correct for p in picks)
    points = round(raw_points * PERFECT_PODIUM_MULTIPLIER, 2) if is_perfect else raw_points
    return BetScore(
        picks=tuple(picks),
        raw_points=raw_points,
        is_perfect_podium=is_perfect,
        points=points,
        status=BetStatus.WON if points > 0 else BetStatus.LOST,
    )


def bet_result_payload(bet: Bet) -> dict:
    """What a bettor is shown once their bet is settled."""
    raw_points = round(sum(p.points_earned or 0.0 for p in bet.picks), 2)
    return {
        "bet_id": bet.id,
        "week_id": bet.week_id,
        "status": bet.status,
        "points_earned": bet.points_earned,
        "is_perfect_podium": bet.is_perfect_podium,
        "perfect_bonus": round((bet.points_earned or 0.0) - raw_points, 2),
        "correct_picks": sum(1 for p in bet.picks if p.is_correct),
        "picks": [p.to_dict() for p in bet.picks],
        "finalized_at": bet.finalized_at.isoformat() if bet.finalized_at else None,
    }


@dataclass
class SettlementResult:
    week_id: str
    podium: list[Optional[str]] = field(default_factory=list)
    bets: list[dict] = field(default_factory=list)

    @property
    def total_points(self) -> float:
        return round(sum(b["points_earned"] or 0.0 for b in self.bets), 2)

    def to_dict(self) -> dict:
        return {
            "week_id": self.week_id,
            "podium": self.podium,
            "bets_settled": len(self.bets),
            "total_points": self.total_points,
            "bets": self.bets,
        }


class SettlementService:
    """Finalizes weeks and serves their settled results."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def finalize_week(self, week_id: str, now: Optional[datetime] = None) -> SettlementResult:
        """Move a week to FINALIZED and settle its bets, exactly once.

        The status change is a compare-and-set issued in the same
        transaction as the settlement writes: a concurrent caller either
        loses the CAS and reads the stored result, or the whole unit rolls
        back and the week stays CLOSED.
        """
        now = now or local_now_naive()
        week = await WeeklyBettingCycle(self.db).require_week(week_id)
        if week.status == BettingWeekStatus.FINALIZED.value:
            return await self.get_settlement(week_id)

        result = await self.db.execute(
            update(BettingWeek)
            .where(BettingWeek.id == week_id)
            .where(
                BettingWeek.status.in_(
                    [BettingWeekStatus.CLOSED.value, BettingWeekStatus.CALIBRATION.value]
                )
            )
            .values(status=BettingWeekStatus.FINALIZED.value, finalized_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            week = await WeeklyBettingCycle(self.db).require_week(week_id)
            await self.db.refresh(week)
            if week.status == BettingWeekStatus.FINALIZED.value:
                return await self.get_settlement(week_id)
            raise SettlementPreconditionError(f"Week {week_id} is {week.status}, close it before finalizing")

        try:
            events = await self._settle(week, now)
            await self.db.commit()
        except Exception as e:
            logger.error(f"Settlement of week {week_id} failed, rolled back: {e}")
            await self.db.rollback()
            raise

        await self.db.refresh(week)
        settlement = await self.get_settlement(week_id)
        log_settlement(week_id, len(settlement.bets), settlement.total_points)
        # The last week of a month settles after the rollover archived it
        await SeasonService(self.db).refresh_bettor_standings(week.year, week.month)
        await event_bus.publish_all(events)
        return settlement

    async def _settle(self, week: BettingWeek, now: datetime) -> list[Event]:
        end = min(now, finalizes_at(week.start_date))
        standings = await RankingService(self.db).rank_competitors(opens_at(week.start_date), end)
        podium = podium_from_standings(standings)
        week.podium_first_id, week.podium_second_id, week.podium_third_id = podium
        actual = {cid: BetPosition.from_rank(i + 1) for i, cid in enumerate(podium) if cid}

        latest_odds = await OddsEngine(self.db).get_latest_odds_map(week.id, as_of=now)

        result = await self.db.execute(
            select(Bet)
            .where(Bet.week_id == week.id, Bet.status == BetStatus.PENDING.value)
            .options(selectinload(Bet.picks))
            .order_by(Bet.id)
        )
        bets = list(result.scalars().all())

        bettors = {}
        if bets:
            bettor_rows = await self.db.execute(
                select(Bettor).where(Bettor.id.in_([b.user_id for b in bets]))
            )
            bettors = {b.id: b for b in bettor_rows.scalars().all()}

        streaks = StreakTracker(self.db)
        events: list[Event] = []
        for bet in bets:
            scores = []
            for pick in bet.picks:
                position = BetPosition(pick.position)
                score = score_pick(
                    position,
                    actual.get(pick.competitor_id),
                    pick.odd_at_bet,
                    latest_odds.get((pick.competitor_id, position)),
                    pick.has_boost,
                )
                pick.is_correct = score.is_correct
                pick.points_earned = score.points
                pick.used_bog_odd = score.used_bog_odd
                pick.settled_odd = score.locked_odd
                scores.append(score)

            bet_score = score_bet(scores)
            bet.points_earned = bet_score.points
            bet.is_perfect_podium = bet_score.is_perfect_podium
            bet.status = bet_score.status.value
            bet.is_finalized = True
            bet.finalized_at = now
            bet.result_seen = False

            bettor = bettors[bet.user_id]
            level_ups = []
            for pick in bet.picks:
                if pick.is_correct:
                    level_ups.append(
                        await award_xp(
                            self.db, bettor, XpSource.CORRECT_PICK, f"{bet.id}:{pick.position}", XP_CORRECT_PICK
                        )
                    )
            if bet.is_perfect_podium:
                level_ups.append(
                    await award_xp(self.db, bettor, XpSource.PERFECT_PODIUM, bet.id, XP_PERFECT_PODIUM)
                )
            level_ups.extend(await streaks.on_bet_settled(bettor, bet))

            events.append(BetFinalized(user_id=bet.user_id, bet_id=bet.id, points_earned=bet.points_earned))
            # Several awards can each level up; the last one carries the final level
            level_ups = [e for e in level_ups if e is not None]
            if level_ups:
                events.append(level_ups[-1])

        events.extend(await streaks.break_betting_streaks(week, now))
        await self.db.flush()
        logger.info(f"Week {week.id} finalized: podium {podium}, {len(bets)} bets settled")
        return events

    async def settle_week(self, week_id: str) -> SettlementResult:
        """Stored settlement of a finalized week. Never recomputes."""
        week = await WeeklyBettingCycle(self.db).require_week(week_id)
        if week.status != BettingWeekStatus.FINALIZED.value:
            raise SettlementPreconditionError(f"Week {week_id} is {week.status}, not finalized")
        return await self.get_settlement(week_id)

    async def get_settlement(self, week_id: str) -> SettlementResult:
        week = await WeeklyBettingCycle(self.db).require_week(week_id)
        result = await self.db.execute(
            select(Bet)
            .where(Bet.week_id == week_id, Bet.is_finalized.is_(True))
            .options(selectinload(Bet.picks))
            .order_by(Bet.id)
            .execution_options(populate_existing=True)
        )
        return SettlementResult(
            week_id=week_id,
            podium=[week.podium_first_id, week.podium_second_id, week.podium_third_id],
            bets=[bet_result_payload(b) for b in result.scalars().all()],
        )

    async def get_unseen_bet_results(self, user_id: str) -> list[dict]:
        result = await self.db.execute(
            select(Bet)
            .where(Bet.user_id == user_id)
            .where(Bet.is_finalized.is_(True), Bet.result_seen.is_(False))
            .options(selectinload(Bet.picks))
            .order_by(Bet.finalized_at.desc(), Bet.id)
        )
        return [bet_result_payload(b) for b in result.scalars().all()]

    async def mark_bet_result_seen(self, user_id: str, bet_id: str) -> bool:
        """Acknowledge a bet result. Retrying is harmless; settlement state is untouched."""
        result = await self.db.execute(
            select(Bet.id).where(Bet.id == bet_id, Bet.user_id == user_id, Bet.is_finalized.is_(True))
        )
        if result.scalar_one_or_none() is None:
            raise BetNotFound(f"Settled bet {bet_id} not found")
        await self.db.execute(
            update(Bet)
            .where(Bet.id == bet_id)
            .values(result_seen=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return True


def podium_from_standings(standings: Sequence[CompetitorStanding]) -> list[Optional[str]]:
    """First three competitor ids of a ranking, padded with None."""
    ids: list[Optional[str]] = [s.competitor_id for s in standings[:3]]
    return ids + [None] * (3 - len(ids))
