"""Monthly season archive and the month rollover."""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from podium.betting.cycle import WeeklyBettingCycle
from podium.config import local_now_naive
from podium.models.betting import Bet, BetStatus, BettingWeek, BettingWeekStatus
from podium.models.competitor import Race, RaceStatus
from podium.models.season import ArchivedBettorRanking, ArchivedCompetitorRanking, SeasonArchive
from podium.rating.soft_reset import apply_monthly_soft_reset
from podium.scheduler.activity_log import log_archive
from podium.seasons.rankings import RankingService

logger = logging.getLogger(__name__)


def archive_id_for(year: int, month: int) -> str:
    return f"season_{year}_{month:02d}"


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[first moment of the month, first moment of the next month)."""
    start = date(year, month, 1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return datetime.combine(start, time(0, 0)), datetime.combine(next_month, time(0, 0))


def previous_month(day: date) -> tuple[int, int]:
    last = day.replace(day=1) - timedelta(days=1)
    return last.year, last.month


class SeasonService:
    """Writes and reads monthly season archives."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_archive(self, year: int, month: int) -> Optional[SeasonArchive]:
        result = await self.db.execute(
            select(SeasonArchive)
            .where(SeasonArchive.year == year, SeasonArchive.month == month)
            .options(
                selectinload(SeasonArchive.competitor_rankings),
                selectinload(SeasonArchive.bettor_rankings),
            )
        )
        return result.scalar_one_or_none()

    async def list_archives(self) -> list[SeasonArchive]:
        result = await self.db.execute(
            select(SeasonArchive).order_by(SeasonArchive.year.desc(), SeasonArchive.month.desc())
        )
        return list(result.scalars().all())

    async def month_settled(self, year: int, month: int) -> bool:
        """True once every betting week belonging to the month is FINALIZED."""
        unsettled = await self.db.scalar(
            select(func.count(BettingWeek.id))
            .where(BettingWeek.year == year, BettingWeek.month == month)
            .where(BettingWeek.status != BettingWeekStatus.FINALIZED.value)
        )
        return not unsettled

    async def _fill_bettor_standings(self, archive: SeasonArchive) -> None:
        bettor_rankings = await RankingService(self.db).get_monthly_rankings(archive.month, archive.year)
        total_bets = await self.db.scalar(
            select(func.count(Bet.id))
            .join(BettingWeek, BettingWeek.id == Bet.week_id)
            .where(BettingWeek.year == archive.year, BettingWeek.month == archive.month)
            .where(Bet.status != BetStatus.CANCELLED.value)
        )
        archive.bettor_rankings = [
            ArchivedBettorRanking(
                user_id=entry.user_id,
                user_name=entry.display_name,
                rank=entry.rank,
                total_points=entry.total_points,
                bets_placed=entry.bets_placed,
            )
            for entry in bettor_rankings
        ]
        archive.total_bettors = len(bettor_rankings)
        archive.total_bets = total_bets or 0
        archive.bettors_final = await self.month_settled(archive.year, archive.month)

    async def archive_month(self, year: int, month: int) -> SeasonArchive:
        """Roll a finished month into a SeasonArchive. Runs once per month.

        Competitors that raced in the month are archived with their final
        rating; those not eligible at month end are kept as provisional
        and get no rank. The month's last week usually settles after the
        rollover, so bettor standings stay open until
        ``refresh_bettor_standings`` sees every week finalized.
        """
        existing = await self.get_archive(year, month)
        if existing is not None:
            logger.info(f"Season {year}-{month:02d} already archived")
            return existing

        start, end = month_bounds(year, month)
        standings = await RankingService(self.db).rank_competitors(start, end - timedelta(microseconds=1))

        total_races = await self.db.scalar(
            select(func.count(Race.id))
            .where(Race.status == RaceStatus.RATED.value)
            .where(Race.played_at >= start, Race.played_at < end)
        )

        archive = SeasonArchive(
            id=archive_id_for(year, month),
            year=year,
            month=month,
            season_name=f"{calendar.month_name[month]} {year}",
            total_competitors=len(standings),
            total_races=total_races or 0,
            avg_competitor_rating=(
                round(sum(s.rating for s in standings) / len(standings), 2) if standings else 0.0
            ),
        )

        rank = 0
        for standing in standings:
            provisional = standing.ineligibility_reason is not None
            if not provisional:
                rank += 1
            archive.competitor_rankings.append(
                ArchivedCompetitorRanking(
                    competitor_id=standing.competitor_id,
                    competitor_name=standing.name,
                    rank=None if provisional else rank,
                    provisional=provisional,
                    final_rating=standing.rating,
                    final_rd=standing.rd,
                    final_vol=standing.volatility,
                    race_count=standing.race_count,
                )
            )
        await self._fill_bettor_standings(archive)

        self.db.add(archive)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Season {year}-{month:02d} archived concurrently")
            return await self.get_archive(year, month)

        log_archive(year, month)
        return await self.get_archive(year, month)

    async def refresh_bettor_standings(self, year: int, month: int) -> Optional[SeasonArchive]:
        """Rebuild an archive's bettor standings until its month is fully settled.

        Competitor standings are never touched: they were frozen before
        the soft reset. No-op when the month isn't archived yet or its
        bettor standings are already final.
        """
        archive = await self.get_archive(year, month)
        if archive is None or archive.bettors_final:
            return archive

        await self._fill_bettor_standings(archive)
        await self.db.commit()
        logger.info(
            f"Season {year}-{month:02d} bettor standings refreshed"
            f"{' (final)' if archive.bettors_final else ''}"
        )
        return await self.get_archive(year, month)


async def monthly_rollover(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Archive last month, then soft reset, then create the new month's first week.

    The archive keeps last month's final ratings, so it has to run before
    the reset touches them.
    """
    now = now or local_now_naive()
    year, month = previous_month(now.date())
    archive = await SeasonService(db).archive_month(year, month)
    reset = await apply_monthly_soft_reset(db, now.year, now.month, now=now)
    week = await WeeklyBettingCycle(db).get_current_week(now)
    return {
        "archived": archive.id,
        "soft_reset_applied": reset.applied,
        "competitors_reset": reset.competitors_reset,
        "current_week": week.id,
    }
