"""
Spark — Users API

Profile read/update for the signed-in user, public profile lookup and
account deactivation.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_profile_service
from app.database import get_db
from app.models.profile import Profile
from app.schemas.profile import ProfileResponse, ProfileUpdate
from app.services.profile_service import ProfileService

logger = structlog.get_logger("spark.api.users")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /me/profile: Own profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/me/profile", response_model=ProfileResponse, summary="Get own profile")
async def get_my_profile(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> Profile:
    return await profiles.get_profile(user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# PUT /me/profile: Partial profile update
# ──────────────────────────────────────────────────────────────────────────────

@router.put("/me/profile", response_model=ProfileResponse, summary="Update own profile")
async def update_my_profile(
    payload: ProfileUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> Profile:
    """Only fields present in the request body are applied."""
    changes = payload.model_dump(exclude_unset=True)
    return await profiles.update_profile(user_id, changes, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /profiles/{profile_id}: Someone else's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/profiles/{profile_id}",
    response_model=ProfileResponse,
    summary="Get a profile by id",
)
async def get_profile(
    profile_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> Profile:
    return await profiles.get_profile_by_id(profile_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /me: Deactivate account
# ──────────────────────────────────────────────────────────────────────────────

@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT, summary="Deactivate account")
async def deactivate_me(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> None:
    await profiles.deactivate(user_id, db)
    logger.info("account_deactivated", user_id=str(user_id))
