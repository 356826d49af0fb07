"""
Spark — Discovery API

Candidate feed, swipes and swipe statistics.  A swipe that completes a
match is committed first and only then pushed to both users as
``newMatch``.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_broadcaster,
    get_current_user_id,
    get_discovery_service,
    get_match_service,
    get_swipe_service,
)
from app.database import get_db
from app.realtime.broadcaster import Broadcaster
from app.schemas.discovery import (
    DiscoveryFilters,
    DiscoveryResponse,
    SwipeRequest,
    SwipeResponse,
    SwipeStats,
)
from app.schemas.match import MatchWithPartner
from app.schemas.profile import CandidateProfile
from app.services.discovery_service import DiscoveryService
from app.services.errors import InvalidArgumentError
from app.services.match_service import MatchService
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("spark.api.discovery")

router = APIRouter()


def _parse_filters(**raw: Optional[int]) -> DiscoveryFilters:
    try:
        return DiscoveryFilters.model_validate(
            {k: v for k, v in raw.items() if v is not None}
        )
    except ValidationError as exc:
        first = exc.errors()[0]
        raise InvalidArgumentError(f"Invalid discovery filters: {first['msg']}") from exc


# ──────────────────────────────────────────────────────────────────────────────
# GET /: Candidate feed
# ──────────────────────────────────────────────────────────────────────────────

@router.get("", response_model=DiscoveryResponse, summary="Discover candidate profiles")
async def discover(
    min_age: Optional[int] = Query(None, alias="minAge"),
    max_age: Optional[int] = Query(None, alias="maxAge"),
    max_distance: Optional[int] = Query(None, alias="maxDistance", description="kilometres"),
    limit: Optional[int] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    discovery: DiscoveryService = Depends(get_discovery_service),
) -> DiscoveryResponse:
    filters = _parse_filters(
        min_age=min_age, max_age=max_age, max_distance=max_distance, limit=limit
    )
    candidates = await discovery.discover(user_id, filters, db)

    profiles = []
    for candidate in candidates:
        profile = CandidateProfile.model_validate(candidate.profile)
        if candidate.distance_km is not None:
            profile.distance_km = round(candidate.distance_km, 1)
        profiles.append(profile)
    return DiscoveryResponse(profiles=profiles, count=len(profiles))


# ──────────────────────────────────────────────────────────────────────────────
# POST /swipe: Like or skip
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/swipe",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Swipe on a profile",
)
async def swipe(
    payload: SwipeRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipes: SwipeService = Depends(get_swipe_service),
    matches: MatchService = Depends(get_match_service),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> SwipeResponse:
    log = logger.bind(user_id=str(user_id), target_id=str(payload.target_user_id))

    result = await swipes.record_swipe(user_id, payload.target_user_id, payload.direction, db)
    if result.match is None:
        await db.commit()
        return SwipeResponse(message=result.message, is_match=False)

    views = {
        party: MatchWithPartner.model_validate(
            (await matches.build_view(result.match, party, db)).to_dict()
        )
        for party in (user_id, payload.target_user_id)
    }
    await db.commit()

    if result.match_created:
        for party, view in views.items():
            broadcaster.emit_new_match(party, view.to_wire())
        log.info("new_match_pushed", match_id=str(result.match.id))

    return SwipeResponse(message=result.message, is_match=True, match=views[user_id])


# ──────────────────────────────────────────────────────────────────────────────
# GET /stats: Swipe counters
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/stats", response_model=SwipeStats, summary="Swipe statistics")
async def stats(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    discovery: DiscoveryService = Depends(get_discovery_service),
) -> SwipeStats:
    return SwipeStats(**await discovery.get_stats(user_id, db))
