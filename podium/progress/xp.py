"""XP awards and level curve.

Level L needs 100·L·(L+1)/2 cumulative XP: 100 for level 1, 300 for
level 2, 600 for level 3, and so on.
"""

import logging
import math
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from podium.events import LevelUp
from podium.models.bettor import Bettor, XpEvent

logger = logging.getLogger(__name__)

XP_BET_PLACED = 10
XP_CORRECT_PICK = 25
XP_PERFECT_PODIUM = 100
XP_STREAK_BONUS = {3: 50, 5: 100}  # win streak reaching exactly this length
LEVEL_XP_STEP = 100


class XpSource:
    BET_PLACED = "bet_placed"
    CORRECT_PICK = "correct_pick"
    PERFECT_PODIUM = "perfect_podium"
    STREAK_BONUS = "streak_bonus"


def xp_for_level(level: int) -> int:
    """Cumulative XP needed to reach ``level``."""
    if level <= 0:
        return 0
    return LEVEL_XP_STEP * level * (level + 1) // 2


def level_for_xp(xp: int) -> int:
    """Highest level whose threshold ``xp`` has reached."""
    if xp < LEVEL_XP_STEP:
        return 0
    # Solve 50·L² + 50·L <= xp, then correct for float rounding
    level = int((math.sqrt(1 + 8 * xp / LEVEL_XP_STEP) - 1) / 2)
    while xp_for_level(level + 1) <= xp:
        level += 1
    while level > 0 and xp_for_level(level) > xp:
        level -= 1
    return level


def level_progress(xp: int) -> dict:
    level = level_for_xp(xp)
    current_floor = xp_for_level(level)
    next_threshold = xp_for_level(level + 1)
    return {
        "xp": xp,
        "level": level,
        "current_level_xp": current_floor,
        "next_level_xp": next_threshold,
        "xp_to_next_level": next_threshold - xp,
    }


async def award_xp(
    db: AsyncSession,
    bettor: Bettor,
    source: str,
    reference: str,
    amount: int,
) -> Optional[LevelUp]:
    """Add XP inside the caller's transaction; returns a LevelUp if one happened.

    Each (user, source, reference) is credited at most once, so settling
    or placing the same thing twice never double-counts.
    """
    result = await db.execute(
        select(XpEvent.id).where(
            XpEvent.user_id == bettor.id,
            XpEvent.source == source,
            XpEvent.reference == reference,
        )
    )
    if result.scalar_one_or_none() is not None:
        return None

    db.add(XpEvent(user_id=bettor.id, source=source, reference=reference, amount=amount))
    old_level = bettor.level or 0
    bettor.xp = (bettor.xp or 0) + amount
    bettor.level = level_for_xp(bettor.xp)
    await db.flush()

    if bettor.level > old_level:
        logger.info(f"Bettor {bettor.id} reached level {bettor.level}")
        return LevelUp(user_id=bettor.id, new_level=bettor.level)
    return None
