"""Shared request dependencies and error mapping."""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from podium.errors import CompetitorIneligible, PodiumError
from podium.models.bettor import Bettor
from podium.models.database import get_db
from podium.progress.bettors import get_or_create_bettor


def http_error(e: PodiumError) -> HTTPException:
    """Map a domain error to an HTTP error carrying its code."""
    detail = {"code": e.code, "message": e.message}
    if isinstance(e, CompetitorIneligible):
        detail["competitor_id"] = e.competitor_id
        detail["reason"] = e.reason
    return HTTPException(status_code=e.status_code, detail=detail)


async def current_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Authenticated user id, set by the auth layer in front of the API."""
    return x_user_id


async def current_bettor(
    user_id: str = Depends(current_user_id),
    x_user_name: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Bettor:
    return await get_or_create_bettor(db, user_id, display_name=x_user_name)
