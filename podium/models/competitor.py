"""Models for competitors, races and the rating store."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Index, String, Integer, Float, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from podium.config import local_now_naive
from podium.models.database import Base
from podium.rating.glicko import BASE_RATING as DEFAULT_RATING, DEFAULT_RD, DEFAULT_VOLATILITY


class RaceStatus(str, Enum):
    """Processing status of an ingested race."""

    RATED = "rated"
    FAILED = "failed"


class Competitor(Base):
    """A racer with a Glicko-2 rating triple."""

    __tablename__ = "competitors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    rating: Mapped[float] = mapped_column(Float, default=DEFAULT_RATING)
    rd: Mapped[float] = mapped_column(Float, default=DEFAULT_RD)
    volatility: Mapped[float] = mapped_column(Float, default=DEFAULT_VOLATILITY)
    race_count_lifetime: Mapped[int] = mapped_column(Integer, default=0)  # never reset
    race_count_30d: Mapped[int] = mapped_column(Integer, default=0)  # sliding window cache
    last_race_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now_naive, onupdate=local_now_naive
    )

    __mapper_args__ = {"version_id_col": version}

    results: Mapped[List["RaceResult"]] = relationship("RaceResult", back_populates="competitor")

    @property
    def conservative_score(self) -> float:
        """Rating minus two deviations: the ~95% lower bound used for rankings."""
        return self.rating - 2 * self.rd

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "rating": self.rating,
            "rd": self.rd,
            "volatility": self.volatility,
            "conservative_score": self.conservative_score,
            "race_count_lifetime": self.race_count_lifetime,
            "race_count_30d": self.race_count_30d,
            "last_race_at": self.last_race_at.isoformat() if self.last_race_at else None,
        }


class Race(Base):
    """One ingested race. Failed races keep the reason for operator retry."""

    __tablename__ = "races"
    __table_args__ = (
        Index("ix_races_played_at", "played_at"),
        Index("ix_races_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    played_at: Mapped[datetime] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(20), default=RaceStatus.RATED.value)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # store version after rating
    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)

    results: Mapped[List["RaceResult"]] = relationship(
        "RaceResult", back_populates="race", cascade="all, delete-orphan"
    )

    def to_dict(self, include_results: bool = False) -> dict:
        """Convert to dictionary."""
        data = {
            "id": self.id,
            "played_at": self.played_at.isoformat(),
            "status": self.status,
            "failure_reason": self.failure_reason,
            "rating_version": self.rating_version,
        }
        if include_results:
            data["results"] = [r.to_dict() for r in self.results]
        return data


class RaceResult(Base):
    """A competitor's finish in a race, with the rating change it caused."""

    __tablename__ = "race_results"
    __table_args__ = (
        UniqueConstraint("race_id", "competitor_id", name="uq_race_results_race_competitor"),
        Index("ix_race_results_competitor_id", "competitor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    race_id: Mapped[str] = mapped_column(String(64), ForeignKey("races.id"))
    competitor_id: Mapped[str] = mapped_column(String(64), ForeignKey("competitors.id"))
    rank: Mapped[int] = mapped_column(Integer)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Audit trail
    rating_before: Mapped[float] = mapped_column(Float)
    rating_after: Mapped[float] = mapped_column(Float)
    rd_before: Mapped[float] = mapped_column(Float)
    rd_after: Mapped[float] = mapped_column(Float)
    volatility_after: Mapped[float] = mapped_column(Float)

    race: Mapped["Race"] = relationship("Race", back_populates="results")
    competitor: Mapped["Competitor"] = relationship("Competitor", back_populates="results")

    @property
    def rating_delta(self) -> float:
        return self.rating_after - self.rating_before

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "race_id": self.race_id,
            "competitor_id": self.competitor_id,
            "rank": self.rank,
            "score": self.score,
            "rating_before": self.rating_before,
            "rating_after": self.rating_after,
            "rating_delta": self.rating_delta,
            "rd_before": self.rd_before,
            "rd_after": self.rd_after,
        }


class RatingState(Base):
    """Singleton row holding the rating store version.

    Every rated race and every soft reset bumps the version so odds
    snapshots can record which ratings they were computed from.
    """

    __tablename__ = "rating_state"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default="store")
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now_naive, onupdate=local_now_naive
    )


class SoftResetLog(Base):
    """Marker that the monthly soft reset was applied for a month."""

    __tablename__ = "soft_reset_log"
    __table_args__ = (UniqueConstraint("year", "month", name="uq_soft_reset_log_month"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    competitors_reset: Mapped[int] = mapped_column(Integer, default=0)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)
