"""Models for bettors, their XP ledger and streak losses."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from podium.config import local_now_naive
from podium.models.database import Base


class StreakType(str, Enum):
    BETTING = "betting"
    PLAY = "play"


class Bettor(Base):
    """A user placing bets, with streak, XP and boost state."""

    __tablename__ = "bettors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100))
    # Racing profile of the user, if they also race (drives the play streak)
    competitor_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("competitors.id"), nullable=True
    )

    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=0)

    current_betting_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_betting_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_bet_week_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    current_play_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_play_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_play_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    current_win_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_win_streak: Mapped[int] = mapped_column(Integer, default=0)

    boost_used_month: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)  # "YYYY-MM"

    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now_naive, onupdate=local_now_naive
    )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "competitor_id": self.competitor_id,
            "xp": self.xp,
            "level": self.level,
            "current_betting_streak": self.current_betting_streak,
            "longest_betting_streak": self.longest_betting_streak,
            "current_play_streak": self.current_play_streak,
            "longest_play_streak": self.longest_play_streak,
            "current_win_streak": self.current_win_streak,
            "longest_win_streak": self.longest_win_streak,
            "boost_used_month": self.boost_used_month,
        }


class XpEvent(Base):
    """XP ledger. The unique key makes every award idempotent."""

    __tablename__ = "xp_events"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "reference", name="uq_xp_events_award"),
        Index("ix_xp_events_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("bettors.id"))
    source: Mapped[str] = mapped_column(String(30))
    reference: Mapped[str] = mapped_column(String(100))  # bet id, bet id + pick position, ...
    amount: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)


class StreakLoss(Base):
    """A broken streak, delivered to the user until acknowledged."""

    __tablename__ = "streak_losses"
    __table_args__ = (Index("ix_streak_losses_user_seen", "user_id", "seen"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("bettors.id"))
    streak_type: Mapped[str] = mapped_column(String(10))
    lost_value: Mapped[int] = mapped_column(Integer)
    lost_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)
    seen: Mapped[bool] = mapped_column(Boolean, default=False)
    seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "type": self.streak_type,
            "lost_value": self.lost_value,
            "lost_at": self.lost_at.isoformat(),
        }
