"""
Spark — Discovery Engine

Produces the candidate feed for a user:

  1. Exclude every target the user has already swiped on (either direction)
     and the user's own profile.  Deactivated accounts never appear.
  2. Resolve age bounds: explicit filter -> stored preference -> default.
  3. Restrict to the user's ``interested_in`` gender when one is set.
  4. When the user has coordinates **and** a ``max_distance`` filter is
     given, keep only candidates within that great-circle distance
     (inclusive).  Candidates without coordinates drop out in that case.
  5. Order by profile recency (``updated_at`` descending), truncate to
     ``limit``.

The read is side-effect free.  Step 4 runs in two phases: a lat/lon
bounding box in SQL narrows the rows, then the exact haversine distance is
checked here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.match import Swipe, SwipeDirection
from app.models.profile import INTEREST_ANY, Profile
from app.models.user import User
from app.schemas.discovery import DiscoveryFilters
from app.services.errors import NotFoundError
from app.utils.geo import bounding_box, haversine_km, within_distance

logger = structlog.get_logger("spark.discovery_service")

# Slack added to the SQL bounding box so float error never drops a
# candidate sitting exactly on the boundary; the exact check follows.
_BOX_SLACK_KM = 0.01


@dataclass(frozen=True)
class Candidate:
    profile: Profile
    distance_km: float | None = None


@dataclass(frozen=True)
class AgeBounds:
    minimum: int
    maximum: int


class DiscoveryService:
    """Filter engine behind ``GET /discovery`` and ``GET /discovery/stats``."""

    def __init__(
        self,
        default_limit: int | None = None,
        default_min_age: int | None = None,
        default_max_age: int | None = None,
    ) -> None:
        settings = get_settings()
        self.default_limit = default_limit or settings.DISCOVERY_DEFAULT_LIMIT
        self.default_min_age = default_min_age or settings.DISCOVERY_DEFAULT_MIN_AGE
        self.default_max_age = default_max_age or settings.DISCOVERY_DEFAULT_MAX_AGE

    # ── Public API ────────────────────────────────────────────────────────

    async def discover(
        self,
        user_id: uuid.UUID,
        filters: DiscoveryFilters,
        db_session: AsyncSession,
    ) -> list[Candidate]:
        """Return the ordered candidate list for ``user_id``.

        Raises
        ------
        NotFoundError
            If the requesting user has no profile.
        """
        log = logger.bind(user_id=str(user_id))

        me = await self._get_profile(user_id, db_session)
        bounds = self.resolve_age_bounds(me, filters)
        limit = filters.limit or self.default_limit

        already_swiped = select(Swipe.target_id).where(Swipe.swiper_id == user_id)

        stmt = (
            select(Profile)
            .join(User, User.id == Profile.user_id)
            .where(User.is_active.is_(True))
            .where(Profile.user_id != user_id)
            .where(Profile.user_id.not_in(already_swiped))
            .where(Profile.age >= bounds.minimum)
            .where(Profile.age <= bounds.maximum)
        )

        if me.interested_in and me.interested_in != INTEREST_ANY:
            stmt = stmt.where(Profile.gender == me.interested_in)

        distance_active = filters.max_distance is not None and me.has_coordinates
        if distance_active:
            box = bounding_box(
                me.latitude, me.longitude, filters.max_distance + _BOX_SLACK_KM
            )
            stmt = stmt.where(
                Profile.latitude.is_not(None),
                Profile.longitude.is_not(None),
                Profile.latitude.between(box.min_lat, box.max_lat),
            )
            if box.min_lon is not None:
                stmt = stmt.where(Profile.longitude.between(box.min_lon, box.max_lon))

        stmt = stmt.order_by(Profile.updated_at.desc(), Profile.id)
        if not distance_active:
            stmt = stmt.limit(limit)

        result = await db_session.execute(stmt)
        rows = result.scalars().all()

        candidates: list[Candidate] = []
        for profile in rows:
            distance = None
            if me.has_coordinates and profile.has_coordinates:
                distance = haversine_km(
                    me.latitude, me.longitude, profile.latitude, profile.longitude
                )
            if distance_active and not within_distance(distance, filters.max_distance):
                continue
            candidates.append(Candidate(profile=profile, distance_km=distance))
            if len(candidates) >= limit:
                break

        log.info(
            "discover_complete",
            candidate_count=len(candidates),
            min_age=bounds.minimum,
            max_age=bounds.maximum,
            distance_filter=distance_active,
            limit=limit,
        )
        return candidates

    async def get_stats(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[str, int]:
        """Swipe counters for ``user_id``: given (total/likes/skips) and
        likes received."""
        given_stmt = (
            select(Swipe.direction, func.count())
            .where(Swipe.swiper_id == user_id)
            .group_by(Swipe.direction)
        )
        given = dict((await db_session.execute(given_stmt)).all())

        received_stmt = select(func.count()).select_from(Swipe).where(
            Swipe.target_id == user_id,
            Swipe.direction == SwipeDirection.RIGHT.value,
        )
        received = (await db_session.execute(received_stmt)).scalar_one()

        likes = int(given.get(SwipeDirection.RIGHT.value, 0))
        skips = int(given.get(SwipeDirection.LEFT.value, 0))
        return {
            "total_swipes": likes + skips,
            "likes": likes,
            "skips": skips,
            "received_likes": int(received),
        }

    def resolve_age_bounds(self, me: Profile, filters: DiscoveryFilters) -> AgeBounds:
        minimum = filters.min_age
        if minimum is None:
            minimum = me.min_age_preference or self.default_min_age
        maximum = filters.max_age
        if maximum is None:
            maximum = me.max_age_preference or self.default_max_age
        return AgeBounds(minimum=minimum, maximum=maximum)

    # ── Private helpers ──────────────────────────────────────────────────

    async def _get_profile(self, user_id: uuid.UUID, db_session: AsyncSession) -> Profile:
        result = await db_session.execute(select(Profile).where(Profile.user_id == user_id))
        profile = result.scalar_one_or_none()
        if profile is None:
            logger.warning("discover_profile_not_found", user_id=str(user_id))
            raise NotFoundError("Profile not found")
        return profile
