"""Bettor lookup. Users come from the auth collaborator; rows are made on first use."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from podium.errors import BettorNotFound
from podium.models.bettor import Bettor

logger = logging.getLogger(__name__)


async def get_bettor(db: AsyncSession, user_id: str) -> Optional[Bettor]:
    result = await db.execute(select(Bettor).where(Bettor.id == user_id))
    return result.scalar_one_or_none()


async def require_bettor(db: AsyncSession, user_id: str) -> Bettor:
    bettor = await get_bettor(db, user_id)
    if bettor is None:
        raise BettorNotFound(f"Bettor {user_id} not found")
    return bettor


async def get_or_create_bettor(
    db: AsyncSession,
    user_id: str,
    display_name: Optional[str] = None,
    competitor_id: Optional[str] = None,
) -> Bettor:
    """Fetch the bettor row for an authenticated user, creating it if needed."""
    bettor = await get_bettor(db, user_id)
    if bettor is not None:
        return bettor

    bettor = Bettor(id=user_id, display_name=display_name or user_id, competitor_id=competitor_id)
    db.add(bettor)
    try:
        await db.commit()
    except IntegrityError:
        # Created by a concurrent request
        await db.rollback()
        return await require_bettor(db, user_id)
    await db.refresh(bettor)
    logger.info(f"Registered bettor {user_id}")
    return bettor
