"""Application configuration using Pydantic settings."""

from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PODIUM_",
        extra="ignore",
    )

    # Database
    db_path: Path = Path("./data/podium.db")

    # App
    debug: bool = False
    log_level: str = "INFO"
    disable_background: bool = False
    timezone: str = "Europe/Paris"

    # Odds simulation
    monte_carlo_trials: int = 50_000
    monte_carlo_workers: int = 4
    monte_carlo_seed: Optional[int] = None

    # Glicko-2 system constant (constrains volatility change)
    glicko_tau: float = 0.5

    @property
    def database_url(self) -> str:
        """SQLite database URL for SQLAlchemy."""
        return f"sqlite+aiosqlite:///{self.db_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Export for convenience
settings = get_settings()

LOCAL_TZ = ZoneInfo(settings.timezone)


def local_now() -> datetime:
    """Current time in the league's timezone."""
    return datetime.now(LOCAL_TZ)


def local_now_naive() -> datetime:
    """Current local time as naive datetime (for SQLAlchemy defaults).

    SQLite doesn't handle timezone-aware datetimes well, so all
    timestamps are stored as naive local time.
    """
    return local_now().replace(tzinfo=None)


def local_today() -> date:
    """Today's date in the league's timezone."""
    return local_now().date()
