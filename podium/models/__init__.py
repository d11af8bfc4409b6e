"""Database models for Podium."""

from podium.models.database import Base, get_db, init_db
from podium.models.competitor import Competitor, Race, RaceResult, RaceStatus, RatingState, SoftResetLog
from podium.models.betting import (
    Bet,
    BetPick,
    BetPosition,
    BetStatus,
    BettingWeek,
    BettingWeekStatus,
    CompetitorOdds,
    OddsSnapshot,
)
from podium.models.bettor import Bettor, StreakLoss, StreakType, XpEvent
from podium.models.season import ArchivedBettorRanking, ArchivedCompetitorRanking, SeasonArchive

__all__ = [
    "Base",
    "get_db",
    "init_db",
    "Competitor",
    "Race",
    "RaceResult",
    "RaceStatus",
    "RatingState",
    "SoftResetLog",
    "Bet",
    "BetPick",
    "BetPosition",
    "BetStatus",
    "BettingWeek",
    "BettingWeekStatus",
    "CompetitorOdds",
    "OddsSnapshot",
    "Bettor",
    "StreakLoss",
    "StreakType",
    "XpEvent",
    "ArchivedBettorRanking",
    "ArchivedCompetitorRanking",
    "SeasonArchive",
]
