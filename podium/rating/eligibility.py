"""Betting eligibility rules for competitors."""

from datetime import datetime, timedelta
from typing import Optional

MIN_LIFETIME_RACES = 5
MIN_RECENT_RACES = 2
RECENT_WINDOW_DAYS = 30

CALIBRATING = "calibrating"  # fewer than 5 lifetime races
INACTIVE = "inactive"  # fewer than 2 races in the trailing 30 days


def ineligibility_reason(race_count_lifetime: int, race_count_30d: int) -> Optional[str]:
    """Return why a competitor can't be bet on, or None if they can.

    Calibration is checked before activity; the first failing rule wins.
    """
    if race_count_lifetime < MIN_LIFETIME_RACES:
        return CALIBRATING
    if race_count_30d < MIN_RECENT_RACES:
        return INACTIVE
    return None


def is_eligible(race_count_lifetime: int, race_count_30d: int) -> bool:
    return ineligibility_reason(race_count_lifetime, race_count_30d) is None


def calibration_progress(race_count_lifetime: int) -> int:
    """Races counted toward calibration, capped at the requirement (X out of 5)."""
    return min(race_count_lifetime, MIN_LIFETIME_RACES)


def window_start(now: datetime) -> datetime:
    """Start of the trailing activity window ending at ``now``."""
    return now - timedelta(days=RECENT_WINDOW_DAYS)
