"""Competitor and bettor rankings."""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from podium.betting.cycle import opens_at, week_start
from podium.config import local_now_naive
from podium.models.betting import Bet, BetPick, BetStatus, BettingWeek
from podium.models.bettor import Bettor
from podium.models.competitor import Competitor, Race, RaceResult, RaceStatus
from podium.rating.eligibility import ineligibility_reason

logger = logging.getLogger(__name__)


class RankingPeriod:
    WEEK = "week"
    MONTH = "month"
    ALL = "all"

    choices = (WEEK, MONTH, ALL)


@dataclass
class CompetitorStanding:
    """A competitor's place in a ranking window."""

    rank: int
    competitor_id: str
    name: str
    rating: float
    rd: float
    volatility: float
    conservative_score: float
    race_count: int  # races inside the window
    race_count_lifetime: int
    ineligibility_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BettorRanking:
    """A bettor's totals for one month."""

    rank: int
    user_id: str
    display_name: str
    total_points: float
    bets_placed: int
    bets_won: int
    perfect_bets: int
    boosts_used: int
    win_rate: float
    current_betting_streak: int
    current_win_streak: int
    points_behind: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def standing_sort_key(competitor: Competitor, race_count: int) -> tuple:
    """Conservative score desc, rating desc, RD asc, races desc, then id."""
    return (
        -competitor.conservative_score,
        -competitor.rating,
        competitor.rd,
        -race_count,
        competitor.id,
    )


def period_start(period: str, now: datetime) -> Optional[datetime]:
    if period == RankingPeriod.WEEK:
        return opens_at(week_start(now.date()))
    if period == RankingPeriod.MONTH:
        return datetime.combine(date(now.year, now.month, 1), time(0, 0))
    if period == RankingPeriod.ALL:
        return None
    raise ValueError(f"Unknown ranking period: {period}")


class RankingService:
    """Builds competitor standings and monthly bettor leaderboards."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def rank_competitors(
        self, start: Optional[datetime], end: datetime
    ) -> list[CompetitorStanding]:
        """Rank competitors with at least one rated race in [start, end].

        Uses each competitor's current rating, so called at week end it
        gives the week's final finishing order.
        """
        conditions = [Race.status == RaceStatus.RATED.value, Race.played_at <= end]
        if start is not None:
            conditions.append(Race.played_at >= start)
        result = await self.db.execute(
            select(Competitor, func.count(RaceResult.id).label("race_count"))
            .join(RaceResult, RaceResult.competitor_id == Competitor.id)
            .join(Race, Race.id == RaceResult.race_id)
            .where(and_(*conditions))
            .group_by(Competitor.id)
        )
        rows = sorted(result.all(), key=lambda row: standing_sort_key(row[0], row[1]))
        return [
            CompetitorStanding(
                rank=i + 1,
                competitor_id=competitor.id,
                name=competitor.name,
                rating=competitor.rating,
                rd=competitor.rd,
                volatility=competitor.volatility,
                conservative_score=competitor.conservative_score,
                race_count=race_count,
                race_count_lifetime=competitor.race_count_lifetime,
                ineligibility_reason=ineligibility_reason(
                    competitor.race_count_lifetime, competitor.race_count_30d
                ),
            )
            for i, (competitor, race_count) in enumerate(rows)
        ]

    async def get_competitor_rankings(
        self, period: str = RankingPeriod.WEEK, now: Optional[datetime] = None
    ) -> list[CompetitorStanding]:
        now = now or local_now_naive()
        return await self.rank_competitors(period_start(period, now), now)

    async def get_monthly_rankings(self, month: int, year: int) -> list[BettorRanking]:
        """Bettor leaderboard for the weeks belonging to ``month``/``year``.

        Sorted by points (desc), then bets won, then perfect bets, then name.
        """
        settled = Bet.status.in_([BetStatus.WON.value, BetStatus.LOST.value])
        won_case = case((Bet.status == BetStatus.WON.value, 1), else_=0)
        perfect_case = case((and_(settled, Bet.is_perfect_podium.is_(True)), 1), else_=0)
        settled_case = case((settled, 1), else_=0)
        boosted_bets = select(BetPick.bet_id).where(BetPick.has_boost.is_(True))
        boost_case = case((Bet.id.in_(boosted_bets), 1), else_=0)
        points = func.coalesce(func.sum(Bet.points_earned), 0.0)

        result = await self.db.execute(
            select(
                Bettor.id,
                Bettor.display_name,
                Bettor.current_betting_streak,
                Bettor.current_win_streak,
                points.label("total_points"),
                func.count(Bet.id).label("bets_placed"),
                func.sum(won_case).label("bets_won"),
                func.sum(perfect_case).label("perfect_bets"),
                func.sum(settled_case).label("bets_settled"),
                func.sum(boost_case).label("boosts_used"),
            )
            .join(Bet, Bet.user_id == Bettor.id)
            .join(BettingWeek, BettingWeek.id == Bet.week_id)
            .where(BettingWeek.year == year, BettingWeek.month == month)
            .where(Bet.status != BetStatus.CANCELLED.value)
            .group_by(Bettor.id)
            .order_by(
                points.desc(),
                func.sum(won_case).desc(),
                func.sum(perfect_case).desc(),
                Bettor.display_name.asc(),
                Bettor.id.asc(),
            )
        )

        rankings = []
        leader_points = None
        for i, row in enumerate(result.all()):
            total_points = round(float(row.total_points or 0.0), 2)
            if leader_points is None:
                leader_points = total_points
            bets_settled = row.bets_settled or 0
            rankings.append(
                BettorRanking(
                    rank=i + 1,
                    user_id=row.id,
                    display_name=row.display_name,
                    total_points=total_points,
                    bets_placed=row.bets_placed or 0,
                    bets_won=row.bets_won or 0,
                    perfect_bets=row.perfect_bets or 0,
                    boosts_used=row.boosts_used or 0,
                    win_rate=round((row.bets_won or 0) / bets_settled, 3) if bets_settled else 0.0,
                    current_betting_streak=row.current_betting_streak or 0,
                    current_win_streak=row.current_win_streak or 0,
                    points_behind=round(leader_points - total_points, 2),
                )
            )
        return rankings
