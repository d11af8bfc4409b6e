"""Operator endpoints: race ingestion, manual finalize and odds recompute."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from podium.api.deps import http_error
from podium.betting.cycle import WeeklyBettingCycle
from podium.betting.settlement import SettlementService
from podium.config import local_now_naive
from podium.errors import PodiumError
from podium.events import event_bus
from podium.models.database import get_db
from podium.odds.engine import OddsEngine, RecomputeTrigger
from podium.pipeline import process_race
from podium.rating.store import RatingStore
from podium.rating.updater import RaceResultIn, RatingUpdater
from podium.scheduler.activity_log import activity_log

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Pydantic Models ---


class CompetitorCreate(BaseModel):
    name: str
    competitor_id: Optional[str] = None


class ResultEntry(BaseModel):
    competitor_id: str
    rank: int
    score: Optional[float] = None


class RaceSubmission(BaseModel):
    race_id: str
    played_at: Optional[datetime] = None
    results: list[ResultEntry]


# --- Competitors and races ---


@router.post("/competitors", status_code=201)
async def create_competitor(request: CompetitorCreate, db: AsyncSession = Depends(get_db)):
    competitor = await RatingStore(db).create_competitor(request.name, request.competitor_id)
    return competitor.to_dict()


@router.post("/races", status_code=201)
async def submit_race(request: RaceSubmission, db: AsyncSession = Depends(get_db)):
    """Rate a race. Rejected races are recorded as failed and not retried."""
    results = [RaceResultIn(r.competitor_id, r.rank, r.score) for r in request.results]
    try:
        update = await process_race(db, request.race_id, results, played_at=request.played_at)
    except PodiumError as e:
        raise http_error(e)
    return {
        "race_id": update.race_id,
        "rating_version": update.rating_version,
        "deltas": {cid: round(update.delta(cid), 2) for cid in update.competitor_ids},
    }


@router.get("/races/failed")
async def list_failed_races(db: AsyncSession = Depends(get_db)):
    races = await RatingUpdater(db).get_failed_races()
    return [r.to_dict() for r in races]


# --- Weeks and odds ---


@router.post("/weeks/{week_id}/finalize")
async def finalize_week(week_id: str, db: AsyncSession = Depends(get_db)):
    """Manual finalize. Safe to race the scheduled run: only one settles."""
    now = local_now_naive()
    try:
        week = await WeeklyBettingCycle(db).require_week(week_id)
        await WeeklyBettingCycle(db).advance(week, now)
        settlement = await SettlementService(db).finalize_week(week_id, now=now)
    except PodiumError as e:
        raise http_error(e)
    return settlement.to_dict()


@router.post("/odds/{week_id}/recompute")
async def recompute_odds(week_id: str, db: AsyncSession = Depends(get_db)):
    try:
        snapshot = await OddsEngine(db).recompute(week_id, RecomputeTrigger.MANUAL)
    except PodiumError as e:
        raise http_error(e)
    if snapshot is None:
        return {"week_id": week_id, "recomputed": False}
    return {
        "week_id": week_id,
        "recomputed": True,
        "snapshot_id": snapshot.id,
        "rating_version": snapshot.rating_version,
    }


# --- Monitoring ---


@router.get("/activity")
async def get_activity(limit: int = 50):
    return activity_log.get_entries(limit)


@router.get("/events")
async def get_recent_events(limit: int = 50):
    return event_bus.recent(limit)
