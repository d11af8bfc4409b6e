"""Models for betting weeks, odds snapshots, bets and picks."""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from podium.config import local_now_naive
from podium.models.database import Base


class BettingWeekStatus(str, Enum):
    """Lifecycle of a betting week. Transitions only move forward."""

    CALIBRATION = "calibration"  # first week of the month, no betting
    OPEN = "open"
    CLOSED = "closed"
    FINALIZED = "finalized"


class BetStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    CANCELLED = "cancelled"


class BetPosition(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"

    @property
    def rank(self) -> int:
        return {"first": 1, "second": 2, "third": 3}[self.value]

    @classmethod
    def from_rank(cls, rank: int) -> "BetPosition":
        return [cls.FIRST, cls.SECOND, cls.THIRD][rank - 1]


class BettingWeek(Base):
    """One Monday-to-Sunday betting week."""

    __tablename__ = "betting_weeks"
    __table_args__ = (
        UniqueConstraint("iso_year", "week_number", name="uq_betting_weeks_iso_week"),
        Index("ix_betting_weeks_year_month", "year", "month"),
        Index("ix_betting_weeks_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    iso_year: Mapped[int] = mapped_column(Integer)
    week_number: Mapped[int] = mapped_column(Integer)  # ISO week number
    year: Mapped[int] = mapped_column(Integer)  # month the week belongs to (by its Monday)
    month: Mapped[int] = mapped_column(Integer)
    season_week_number: Mapped[int] = mapped_column(Integer)  # 1 = calibration week
    start_date: Mapped[date] = mapped_column(Date)  # Monday
    end_date: Mapped[date] = mapped_column(Date)  # Sunday
    status: Mapped[str] = mapped_column(String(20), default=BettingWeekStatus.OPEN.value)
    podium_first_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    podium_second_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    podium_third_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)

    bets: Mapped[List["Bet"]] = relationship("Bet", back_populates="week")
    snapshots: Mapped[List["OddsSnapshot"]] = relationship(
        "OddsSnapshot", back_populates="week", cascade="all, delete-orphan"
    )

    @property
    def is_calibration_week(self) -> bool:
        return self.season_week_number == 1

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "week_number": self.week_number,
            "season_week_number": self.season_week_number,
            "year": self.year,
            "month": self.month,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
            "is_calibration_week": self.is_calibration_week,
            "podium_first_id": self.podium_first_id,
            "podium_second_id": self.podium_second_id,
            "podium_third_id": self.podium_third_id,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }


class OddsSnapshot(Base):
    """A complete odds computation. Never patched; superseded by newer ones."""

    __tablename__ = "odds_snapshots"
    __table_args__ = (Index("ix_odds_snapshots_week_computed", "week_id", "computed_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_id: Mapped[str] = mapped_column(String(64), ForeignKey("betting_weeks.id"))
    rating_version: Mapped[int] = mapped_column(Integer)
    trigger: Mapped[str] = mapped_column(String(30))  # week_open | race | pre_finalize | manual
    trials: Mapped[int] = mapped_column(Integer)
    seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)

    week: Mapped["BettingWeek"] = relationship("BettingWeek", back_populates="snapshots")
    odds: Mapped[List["CompetitorOdds"]] = relationship(
        "CompetitorOdds", back_populates="snapshot", cascade="all, delete-orphan"
    )


class CompetitorOdds(Base):
    """Podium odds for one eligible competitor inside a snapshot."""

    __tablename__ = "competitor_odds"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "competitor_id", name="uq_competitor_odds_snapshot_competitor"),
        Index("ix_competitor_odds_week_competitor", "week_id", "competitor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(Integer, ForeignKey("odds_snapshots.id"))
    week_id: Mapped[str] = mapped_column(String(64), ForeignKey("betting_weeks.id"))
    competitor_id: Mapped[str] = mapped_column(String(64), ForeignKey("competitors.id"))
    odd_first: Mapped[float] = mapped_column(Float)
    odd_second: Mapped[float] = mapped_column(Float)
    odd_third: Mapped[float] = mapped_column(Float)
    probability: Mapped[float] = mapped_column(Float)  # closed-form win probability
    prob_first: Mapped[float] = mapped_column(Float)
    prob_second: Mapped[float] = mapped_column(Float)
    prob_third: Mapped[float] = mapped_column(Float)
    rating: Mapped[float] = mapped_column(Float)
    rd: Mapped[float] = mapped_column(Float)
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)

    snapshot: Mapped["OddsSnapshot"] = relationship("OddsSnapshot", back_populates="odds")

    def odd_for(self, position: "BetPosition | str") -> float:
        position = BetPosition(position)
        if position is BetPosition.FIRST:
            return self.odd_first
        if position is BetPosition.SECOND:
            return self.odd_second
        return self.odd_third

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "competitor_id": self.competitor_id,
            "week_id": self.week_id,
            "odd_first": self.odd_first,
            "odd_second": self.odd_second,
            "odd_third": self.odd_third,
            "probability": self.probability,
            "is_eligible": self.is_eligible,
            "computed_at": self.computed_at.isoformat(),
            "metadata": {"rating": self.rating, "rd": self.rd},
        }


class Bet(Base):
    """A user's podium bet for a week."""

    __tablename__ = "bets"
    __table_args__ = (
        # Exactly one non-cancelled bet per (user, week)
        Index(
            "uq_bets_user_week_active",
            "user_id",
            "week_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index("ix_bets_week_status", "week_id", "status"),
        Index("ix_bets_user_placed", "user_id", "placed_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("bettors.id"))
    week_id: Mapped[str] = mapped_column(String(64), ForeignKey("betting_weeks.id"))
    placed_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)
    status: Mapped[str] = mapped_column(String(20), default=BetStatus.PENDING.value)
    points_earned: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_perfect_podium: Mapped[bool] = mapped_column(Boolean, default=False)
    is_finalized: Mapped[bool] = mapped_column(Boolean, default=False)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    result_seen: Mapped[bool] = mapped_column(Boolean, default=False)

    week: Mapped["BettingWeek"] = relationship("BettingWeek", back_populates="bets")
    picks: Mapped[List["BetPick"]] = relationship(
        "BetPick", back_populates="bet", cascade="all, delete-orphan", order_by="BetPick.id"
    )

    @property
    def has_boost(self) -> bool:
        return any(p.has_boost for p in self.picks)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "week_id": self.week_id,
            "placed_at": self.placed_at.isoformat(),
            "status": self.status,
            "is_finalized": self.is_finalized,
            "points_earned": self.points_earned,
            "is_perfect_podium": self.is_perfect_podium,
            "picks": [p.to_dict() for p in self.picks],
        }


class BetPick(Base):
    """One of the three positional picks of a bet."""

    __tablename__ = "bet_picks"
    __table_args__ = (
        UniqueConstraint("bet_id", "position", name="uq_bet_picks_bet_position"),
        UniqueConstraint("bet_id", "competitor_id", name="uq_bet_picks_bet_competitor"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bet_id: Mapped[str] = mapped_column(String(64), ForeignKey("bets.id"))
    competitor_id: Mapped[str] = mapped_column(String(64), ForeignKey("competitors.id"))
    position: Mapped[str] = mapped_column(String(10))
    odd_at_bet: Mapped[float] = mapped_column(Float)  # locked at placement
    has_boost: Mapped[bool] = mapped_column(Boolean, default=False)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    points_earned: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    used_bog_odd: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    settled_odd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    bet: Mapped["Bet"] = relationship("Bet", back_populates="picks")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "competitor_id": self.competitor_id,
            "position": self.position,
            "odd_at_bet": self.odd_at_bet,
            "has_boost": self.has_boost,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
            "used_bog_odd": self.used_bog_odd,
            "settled_odd": self.settled_odd,
        }
