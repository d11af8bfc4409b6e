"""API endpoints for archived seasons."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from podium.models.database import get_db
from podium.seasons.archive import SeasonService

router = APIRouter()


@router.get("")
async def list_seasons(db: AsyncSession = Depends(get_db)):
    archives = await SeasonService(db).list_archives()
    return [a.to_dict() for a in archives]


@router.get("/{year}/{month}")
async def get_season(year: int, month: int, db: AsyncSession = Depends(get_db)):
    archive = await SeasonService(db).get_archive(year, month)
    if not archive:
        raise HTTPException(status_code=404, detail="Season not found")
    return {
        **archive.to_dict(),
        "competitor_rankings": [r.to_dict() for r in archive.competitor_rankings],
        "bettor_rankings": [r.to_dict() for r in archive.bettor_rankings],
    }
