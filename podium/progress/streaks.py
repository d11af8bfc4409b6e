"""Betting, play and win streaks, plus the streak-loss acknowledgement flow.

Betting streak: consecutive betting weeks with a bet. Calibration weeks
have no betting so they are skipped, not missed.
Play streak: consecutive days on which the bettor's competitor raced.
Win streak: consecutive WON bets; reaching 3 or 5 pays an XP bonus once.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from podium.betting.cycle import is_calibration_week
from podium.config import local_now_naive, local_today
from podium.events import Event, StreakLost, event_bus
from podium.models.betting import Bet, BetStatus, BettingWeek
from podium.models.bettor import Bettor, StreakLoss, StreakType
from podium.models.competitor import Competitor
from podium.progress.bettors import require_bettor
from podium.progress.xp import XP_STREAK_BONUS, XpSource, award_xp, level_progress
from podium.rating.eligibility import MIN_LIFETIME_RACES, calibration_progress, ineligibility_reason

logger = logging.getLogger(__name__)


def previous_betting_week_start(monday: date) -> date:
    """Monday of the last non-calibration week before ``monday``."""
    previous = monday - timedelta(days=7)
    while is_calibration_week(previous):
        previous -= timedelta(days=7)
    return previous


def month_key(moment: "date | datetime") -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


class StreakTracker:
    """Updates streak state on placement, settlement and race days."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Betting streak ---

    def on_bet_placed(self, bettor: Bettor, week: BettingWeek) -> None:
        """Count the week towards the betting streak (caller commits)."""
        if bettor.last_bet_week_start == week.start_date:
            return  # re-bet after a cancellation
        previous = previous_betting_week_start(week.start_date)
        if bettor.last_bet_week_start == previous and (bettor.current_betting_streak or 0) > 0:
            bettor.current_betting_streak += 1
        else:
            bettor.current_betting_streak = 1
        bettor.longest_betting_streak = max(
            bettor.longest_betting_streak or 0, bettor.current_betting_streak
        )
        bettor.last_bet_week_start = week.start_date

    async def break_betting_streaks(
        self, week: BettingWeek, now: Optional[datetime] = None
    ) -> list[StreakLost]:
        """Reset the streak of everyone who skipped an open week (caller commits)."""
        if is_calibration_week(week.start_date):
            return []
        now = now or local_now_naive()
        placed = (
            select(Bet.user_id)
            .where(Bet.week_id == week.id)
            .where(Bet.status != BetStatus.CANCELLED.value)
        )
        result = await self.db.execute(
            select(Bettor)
            .where(Bettor.current_betting_streak > 0)
            .where(Bettor.id.not_in(placed))
        )
        events = []
        for bettor in result.scalars().all():
            events.append(self._record_loss(bettor, StreakType.BETTING, bettor.current_betting_streak, now))
            bettor.current_betting_streak = 0
        await self.db.flush()
        if events:
            logger.info(f"Week {week.id}: {len(events)} betting streaks broken")
        return events

    # --- Win streak ---

    async def on_bet_settled(self, bettor: Bettor, bet: Bet) -> list[Event]:
        """Advance or reset the win streak; returns LevelUp events (caller commits)."""
        if bet.status != BetStatus.WON.value:
            bettor.current_win_streak = 0
            return []

        bettor.current_win_streak = (bettor.current_win_streak or 0) + 1
        bettor.longest_win_streak = max(bettor.longest_win_streak or 0, bettor.current_win_streak)
        bonus = XP_STREAK_BONUS.get(bettor.current_win_streak)
        if bonus is None:
            return []
        level_up = await award_xp(
            self.db, bettor, XpSource.STREAK_BONUS, f"{bet.id}:{bettor.current_win_streak}", bonus
        )
        return [level_up] if level_up else []

    # --- Play streak ---

    async def record_play(self, competitor_ids: Iterable[str], day: Optional[date] = None) -> int:
        """Extend the play streak of bettors whose competitor raced on ``day``."""
        day = day or local_today()
        ids = list(competitor_ids)
        if not ids:
            return 0
        result = await self.db.execute(select(Bettor).where(Bettor.competitor_id.in_(ids)))
        updated = 0
        for bettor in result.scalars().all():
            if bettor.last_play_date is not None and bettor.last_play_date >= day:
                continue
            if bettor.last_play_date == day - timedelta(days=1):
                bettor.current_play_streak = (bettor.current_play_streak or 0) + 1
            else:
                bettor.current_play_streak = 1
            bettor.longest_play_streak = max(bettor.longest_play_streak or 0, bettor.current_play_streak)
            bettor.last_play_date = day
            updated += 1
        await self.db.commit()
        return updated

    async def expire_play_streaks(self, today: Optional[date] = None) -> list[StreakLost]:
        """Break play streaks with no race yesterday or today."""
        today = today or local_today()
        cutoff = today - timedelta(days=1)
        result = await self.db.execute(
            select(Bettor)
            .where(Bettor.current_play_streak > 0)
            .where(and_(Bettor.last_play_date.is_not(None), Bettor.last_play_date < cutoff))
        )
        now = local_now_naive()
        events = []
        for bettor in result.scalars().all():
            events.append(self._record_loss(bettor, StreakType.PLAY, bettor.current_play_streak, now))
            bettor.current_play_streak = 0
        await self.db.commit()
        await event_bus.publish_all(events)
        if events:
            logger.info(f"Expired {len(events)} play streaks")
        return events

    # --- Streak-loss delivery ---

    def _record_loss(
        self, bettor: Bettor, streak_type: StreakType, lost_value: int, now: datetime
    ) -> StreakLost:
        self.db.add(
            StreakLoss(user_id=bettor.id, streak_type=streak_type.value, lost_value=lost_value, lost_at=now)
        )
        return StreakLost(user_id=bettor.id, type=streak_type.value, lost_value=lost_value)

    async def get_streak_losses(self, user_id: str) -> list[StreakLoss]:
        """Unseen losses, the most recent one per streak type."""
        result = await self.db.execute(
            select(StreakLoss)
            .where(StreakLoss.user_id == user_id, StreakLoss.seen.is_(False))
            .order_by(StreakLoss.lost_at.desc(), StreakLoss.id.desc())
        )
        latest: dict[str, StreakLoss] = {}
        for loss in result.scalars().all():
            latest.setdefault(loss.streak_type, loss)
        return sorted(latest.values(), key=lambda loss: loss.streak_type)

    async def acknowledge_streak_loss(self, user_id: str, streak_type: str) -> int:
        """Mark unseen losses of a type as seen. Safe to retry."""
        streak_type = StreakType(streak_type).value
        result = await self.db.execute(
            update(StreakLoss)
            .where(
                StreakLoss.user_id == user_id,
                StreakLoss.streak_type == streak_type,
                StreakLoss.seen.is_(False),
            )
            .values(seen=True, seen_at=local_now_naive())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    # --- Summary ---

    async def get_progress(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """XP, level, streaks, boost availability and calibration progress."""
        now = now or local_now_naive()
        bettor = await require_bettor(self.db, user_id)
        progress = {
            "user_id": bettor.id,
            **level_progress(bettor.xp or 0),
            "betting_streak": {
                "current": bettor.current_betting_streak,
                "longest": bettor.longest_betting_streak,
            },
            "play_streak": {
                "current": bettor.current_play_streak,
                "longest": bettor.longest_play_streak,
            },
            "win_streak": {
                "current": bettor.current_win_streak,
                "longest": bettor.longest_win_streak,
            },
            "boost_available": bettor.boost_used_month != month_key(now),
            "calibration": None,
        }
        if bettor.competitor_id:
            result = await self.db.execute(select(Competitor).where(Competitor.id == bettor.competitor_id))
            competitor = result.scalar_one_or_none()
            if competitor is not None:
                progress["calibration"] = {
                    "races": calibration_progress(competitor.race_count_lifetime),
                    "required": MIN_LIFETIME_RACES,
                    "ineligibility_reason": ineligibility_reason(
                        competitor.race_count_lifetime, competitor.race_count_30d
                    ),
                }
        return progress
