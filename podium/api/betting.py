"""API endpoints for weekly podium betting."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from podium.api.deps import current_bettor, current_user_id, http_error
from podium.betting.cycle import WeeklyBettingCycle
from podium.betting.placement import BetService, PickIn
from podium.betting.settlement import SettlementService
from podium.config import local_now_naive
from podium.errors import PodiumError
from podium.models.betting import BetPosition
from podium.models.bettor import Bettor, StreakType
from podium.models.database import get_db
from podium.odds.engine import OddsEngine
from podium.progress.streaks import StreakTracker
from podium.seasons.rankings import RankingPeriod, RankingService

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Pydantic Models ---


class PickRequest(BaseModel):
    competitor_id: str
    position: BetPosition
    has_boost: bool = False


class BetRequest(BaseModel):
    week_id: str
    picks: list[PickRequest]


# --- Week and odds ---


@router.get("/current-week")
async def get_current_week(db: AsyncSession = Depends(get_db)):
    """The current betting week, created on demand."""
    week = await WeeklyBettingCycle(db).get_current_week()
    return week.to_dict()


@router.get("/weeks/{week_id}/odds")
async def get_week_odds(week_id: str, db: AsyncSession = Depends(get_db)):
    """Odds of the last completed snapshot; eligible competitors only."""
    try:
        await WeeklyBettingCycle(db).require_week(week_id)
    except PodiumError as e:
        raise http_error(e)
    odds = await OddsEngine(db).get_week_odds(week_id)
    return [o.to_dict() for o in odds]


# --- Bets ---


@router.post("/bets", status_code=201)
async def place_bet(
    request: BetRequest,
    bettor: Bettor = Depends(current_bettor),
    db: AsyncSession = Depends(get_db),
):
    picks = [PickIn(p.competitor_id, p.position, p.has_boost) for p in request.picks]
    try:
        bet = await BetService(db).place_bet(bettor.id, request.week_id, picks)
    except PodiumError as e:
        raise http_error(e)
    return bet.to_dict()


@router.delete("/bets/{bet_id}")
async def cancel_bet(
    bet_id: str,
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending bet while betting is open. The boost is refunded."""
    try:
        bet = await BetService(db).cancel_bet(user_id, bet_id)
    except PodiumError as e:
        raise http_error(e)
    return bet.to_dict()


@router.get("/bets/history")
async def get_bet_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    page = await BetService(db).get_bet_history(user_id, limit=limit, offset=offset)
    return page.to_dict()


# --- Rankings ---


@router.get("/rankings/monthly")
async def get_monthly_rankings(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000),
    db: AsyncSession = Depends(get_db),
):
    now = local_now_naive()
    rankings = await RankingService(db).get_monthly_rankings(month or now.month, year or now.year)
    return [r.to_dict() for r in rankings]


@router.get("/rankings/competitors")
async def get_competitor_rankings(
    period: str = Query(RankingPeriod.WEEK),
    db: AsyncSession = Depends(get_db),
):
    if period not in RankingPeriod.choices:
        raise HTTPException(status_code=400, detail=f"Unknown period: {period}")
    standings = await RankingService(db).get_competitor_rankings(period)
    return [s.to_dict() for s in standings]


# --- Results, streaks and progress ---


@router.get("/bet-results/unseen")
async def get_unseen_bet_results(
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await SettlementService(db).get_unseen_bet_results(user_id)


@router.post("/bet-results/{bet_id}/seen")
async def mark_bet_result_seen(
    bet_id: str,
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        await SettlementService(db).mark_bet_result_seen(user_id, bet_id)
    except PodiumError as e:
        raise http_error(e)
    return {"bet_id": bet_id, "seen": True}


@router.get("/streak-losses")
async def get_streak_losses(
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    losses = await StreakTracker(db).get_streak_losses(user_id)
    return [loss.to_dict() for loss in losses]


@router.post("/streak-losses/{streak_type}/seen")
async def acknowledge_streak_loss(
    streak_type: StreakType,
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    acknowledged = await StreakTracker(db).acknowledge_streak_loss(user_id, streak_type.value)
    return {"type": streak_type.value, "acknowledged": acknowledged}


@router.get("/progress")
async def get_progress(
    bettor: Bettor = Depends(current_bettor),
    db: AsyncSession = Depends(get_db),
):
    """XP, level, streaks and boost availability."""
    return await StreakTracker(db).get_progress(bettor.id)
