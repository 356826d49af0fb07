"""
Spark — Profile CRUD.

Thin read/write layer over ``profiles``.  The only behaviour that matters
to the rest of the system is that every owner update bumps ``updated_at``,
which discovery uses as its recency signal.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.profile import INTEREST_ANY, Profile
from app.models.user import User
from app.services.errors import InvalidArgumentError, NotFoundError
from app.utils.clock import utcnow

logger = structlog.get_logger("spark.profile_service")


class ProfileService:
    # Fields an owner may change through ``update_profile``.
    EDITABLE_FIELDS: frozenset[str] = frozenset({
        "name",
        "age",
        "bio",
        "gender",
        "interested_in",
        "location",
        "latitude",
        "longitude",
        "max_distance",
        "min_age_preference",
        "max_age_preference",
    })

    async def get_profile(self, user_id: uuid.UUID, db_session: AsyncSession) -> Profile:
        result = await db_session.execute(select(Profile).where(Profile.user_id == user_id))
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def get_profile_by_id(
        self,
        profile_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Profile:
        profile = await db_session.get(Profile, profile_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def update_profile(
        self,
        user_id: uuid.UUID,
        changes: dict[str, Any],
        db_session: AsyncSession,
    ) -> Profile:
        """Apply a partial update on the owner's profile."""
        log = logger.bind(user_id=str(user_id))

        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise InvalidArgumentError(f"Unknown profile fields: {sorted(unknown)}")

        profile = await self.get_profile(user_id, db_session)

        for field, value in changes.items():
            if hasattr(value, "value"):
                value = value.value
            if field == "interested_in" and value == INTEREST_ANY:
                value = None
            setattr(profile, field, value)

        if profile.min_age_preference > profile.max_age_preference:
            raise InvalidArgumentError("minAgePreference must not exceed maxAgePreference")

        profile.updated_at = utcnow()
        await db_session.flush()

        log.info("update_profile_complete", updated_fields=sorted(changes))
        return profile

    async def deactivate(self, user_id: uuid.UUID, db_session: AsyncSession) -> User:
        """Soft-deactivate the account; the profile row is kept."""
        user = await db_session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        user.is_active = False
        await db_session.flush()
        logger.info("user_deactivated", user_id=str(user_id))
        return user
