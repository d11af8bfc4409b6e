"""Models for the monthly season archive."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from podium.config import local_now_naive
from podium.models.database import Base


class SeasonArchive(Base):
    """Rollup of one finished month."""

    __tablename__ = "season_archives"
    __table_args__ = (UniqueConstraint("year", "month", name="uq_season_archives_month"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    season_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    total_competitors: Mapped[int] = mapped_column(Integer, default=0)
    total_bettors: Mapped[int] = mapped_column(Integer, default=0)
    total_races: Mapped[int] = mapped_column(Integer, default=0)
    total_bets: Mapped[int] = mapped_column(Integer, default=0)
    avg_competitor_rating: Mapped[float] = mapped_column(Float, default=0.0)
    bettors_final: Mapped[bool] = mapped_column(Boolean, default=False)  # every week of the month settled
    created_at: Mapped[datetime] = mapped_column(DateTime, default=local_now_naive)

    competitor_rankings: Mapped[List["ArchivedCompetitorRanking"]] = relationship(
        "ArchivedCompetitorRanking",
        back_populates="archive",
        cascade="all, delete-orphan",
        order_by="ArchivedCompetitorRanking.id",
    )
    bettor_rankings: Mapped[List["ArchivedBettorRanking"]] = relationship(
        "ArchivedBettorRanking",
        back_populates="archive",
        cascade="all, delete-orphan",
        order_by="ArchivedBettorRanking.rank",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "year": self.year,
            "month": self.month,
            "season_name": self.season_name,
            "total_competitors": self.total_competitors,
            "total_bettors": self.total_bettors,
            "total_races": self.total_races,
            "total_bets": self.total_bets,
            "avg_competitor_rating": self.avg_competitor_rating,
            "bettors_final": self.bettors_final,
            "created_at": self.created_at.isoformat(),
        }


class ArchivedCompetitorRanking(Base):
    """A competitor's final standing in an archived month."""

    __tablename__ = "archived_competitor_rankings"
    __table_args__ = (Index("ix_archived_competitor_rankings_archive", "archive_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    archive_id: Mapped[str] = mapped_column(String(64), ForeignKey("season_archives.id"))
    competitor_id: Mapped[str] = mapped_column(String(64))
    competitor_name: Mapped[str] = mapped_column(String(100))
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # None when provisional
    provisional: Mapped[bool] = mapped_column(Boolean, default=False)
    final_rating: Mapped[float] = mapped_column(Float)
    final_rd: Mapped[float] = mapped_column(Float)
    final_vol: Mapped[float] = mapped_column(Float)
    race_count: Mapped[int] = mapped_column(Integer)

    archive: Mapped["SeasonArchive"] = relationship("SeasonArchive", back_populates="competitor_rankings")

    def to_dict(self) -> dict:
        return {
            "competitor_id": self.competitor_id,
            "competitor_name": self.competitor_name,
            "rank": self.rank,
            "provisional": self.provisional,
            "final_rating": self.final_rating,
            "final_rd": self.final_rd,
            "final_vol": self.final_vol,
            "race_count": self.race_count,
        }


class ArchivedBettorRanking(Base):
    """A bettor's final standing in an archived month."""

    __tablename__ = "archived_bettor_rankings"
    __table_args__ = (Index("ix_archived_bettor_rankings_archive", "archive_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    archive_id: Mapped[str] = mapped_column(String(64), ForeignKey("season_archives.id"))
    user_id: Mapped[str] = mapped_column(String(64))
    user_name: Mapped[str] = mapped_column(String(100))
    rank: Mapped[int] = mapped_column(Integer)
    total_points: Mapped[float] = mapped_column(Float)
    bets_placed: Mapped[int] = mapped_column(Integer)

    archive: Mapped["SeasonArchive"] = relationship("SeasonArchive", back_populates="bettor_rankings")

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "rank": self.rank,
            "total_points": self.total_points,
            "bets_placed": self.bets_placed,
        }
