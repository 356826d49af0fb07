"""
Spark — Matches API
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_broadcaster, get_current_user_id, get_match_service
from app.database import get_db
from app.realtime.broadcaster import Broadcaster, match_room
from app.schemas.match import (
    MatchListResponse,
    MatchResponse,
    MatchWithPartner,
    UnmatchResponse,
)
from app.services.match_service import MatchService

logger = structlog.get_logger("spark.api.matches")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /: Active matches, newest first
# ──────────────────────────────────────────────────────────────────────────────

@router.get("", response_model=MatchListResponse, summary="List active matches")
async def list_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
) -> MatchListResponse:
    views = await matches.list_matches(user_id, db)
    items = [MatchWithPartner.model_validate(v.to_dict()) for v in views]
    return MatchListResponse(matches=items, count=len(items))


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id}: One match with the partner resolved
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{match_id}", response_model=MatchWithPartner, summary="Get a match")
async def get_match(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
) -> MatchWithPartner:
    view = await matches.get_match(match_id, user_id, db)
    return MatchWithPartner.model_validate(view.to_dict())


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{match_id}: Unmatch
# ──────────────────────────────────────────────────────────────────────────────

@router.delete("/{match_id}", response_model=UnmatchResponse, summary="Unmatch")
async def unmatch(
    match_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    matches: MatchService = Depends(get_match_service),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> UnmatchResponse:
    match = await matches.unmatch(match_id, user_id, db)
    await db.commit()

    evicted = broadcaster.clear_room(match_room(match_id))
    logger.info("unmatch_room_cleared", match_id=str(match_id), evicted=evicted)
    return UnmatchResponse(
        message="Successfully unmatched",
        match=MatchResponse.model_validate(match),
    )
