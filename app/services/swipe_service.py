"""
Spark — Match Formation

Turns a swipe into (at most) one match:

  1. Reject self-swipes and unknown / deactivated targets before touching
     the ledger.
  2. Insert the swipe.  The ``uq_swipe_pair`` constraint is the only
     duplicate guard; a violation surfaces as ``ConflictError``.
  3. For a right swipe, look for the reciprocal right swipe.
  4. On reciprocity, insert the match.  The partial unique index on the
     active canonical pair makes this idempotent: if a concurrent request
     already created it, the existing row is returned instead.

On PostgreSQL the whole sequence runs under a transaction-scoped advisory
lock keyed on the unordered pair.  Without it, two opposite right swipes
committing concurrently could each miss the other's uncommitted row and no
match would be formed at all.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.match import Match, Swipe, SwipeDirection, ordered_pair
from app.models.user import User
from app.services.errors import ConflictError, InvalidArgumentError, NotFoundError

logger = structlog.get_logger("spark.swipe_service")

MATCH_MESSAGE = "It's a match! 🎉"
LIKED_MESSAGE = "Liked! Waiting for them to like you back."
SKIPPED_MESSAGE = "Skipped"


@dataclass(frozen=True)
class SwipeResult:
    message: str
    match: Match | None = None
    # False when the match already existed (concurrent double detection).
    match_created: bool = False


def pair_lock_key(first: uuid.UUID, second: uuid.UUID) -> int:
    """Stable signed 64-bit advisory-lock key for an unordered pair."""
    low, high = ordered_pair(first, second)
    digest = hashlib.blake2b(f"{low}:{high}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class SwipeService:
    """Swipe ledger writes and reciprocal-like detection."""

    async def record_swipe(
        self,
        swiper_id: uuid.UUID,
        target_id: uuid.UUID,
        direction: str | SwipeDirection,
        db_session: AsyncSession,
    ) -> SwipeResult:
        """Record one decision and create the match if it is reciprocal.

        Raises
        ------
        InvalidArgumentError
            Self-swipe or unknown direction.
        NotFoundError
            Target user does not exist or is deactivated.
        ConflictError
            A swipe for this (swiper, target) pair already exists.
        """
        log = logger.bind(swiper_id=str(swiper_id), target_id=str(target_id))

        if swiper_id == target_id:
            raise InvalidArgumentError("Cannot swipe on yourself")

        try:
            direction = SwipeDirection(direction)
        except ValueError as exc:
            raise InvalidArgumentError(
                'Direction must be either "left" or "right"'
            ) from exc

        target = await db_session.get(User, target_id)
        if target is None or not target.is_active:
            log.info("swipe_target_not_found")
            raise NotFoundError("User not found")

        await self._lock_pair(swiper_id, target_id, db_session)

        try:
            async with db_session.begin_nested():
                db_session.add(
                    Swipe(
                        swiper_id=swiper_id,
                        target_id=target_id,
                        direction=direction.value,
                    )
                )
                await db_session.flush()
        except IntegrityError as exc:
            log.info("swipe_duplicate")
            raise ConflictError("Already swiped on this profile") from exc

        log.info("swipe_recorded", direction=direction.value)

        if direction is SwipeDirection.LEFT:
            return SwipeResult(message=SKIPPED_MESSAGE)

        if not await self._has_liked(target_id, swiper_id, db_session):
            return SwipeResult(message=LIKED_MESSAGE)

        match, created = await self.create_match(swiper_id, target_id, db_session)
        return SwipeResult(message=MATCH_MESSAGE, match=match, match_created=created)

    async def create_match(
        self,
        first: uuid.UUID,
        second: uuid.UUID,
        db_session: AsyncSession,
    ) -> tuple[Match, bool]:
        """Insert the active match for a pair, or return the one that exists.

        Returns ``(match, created)``.
        """
        user_a_id, user_b_id = ordered_pair(first, second)

        match = Match(user_a_id=user_a_id, user_b_id=user_b_id, is_active=True)
        try:
            async with db_session.begin_nested():
                db_session.add(match)
                await db_session.flush()
        except IntegrityError:
            existing = await self._get_active_match(user_a_id, user_b_id, db_session)
            if existing is None:
                raise
            logger.info("match_already_exists", match_id=str(existing.id))
            return existing, False

        logger.info(
            "match_created",
            match_id=str(match.id),
            user_a_id=str(user_a_id),
            user_b_id=str(user_b_id),
        )
        return match, True

    # ── Private helpers ──────────────────────────────────────────────────

    async def _has_liked(
        self,
        swiper_id: uuid.UUID,
        target_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> bool:
        stmt = select(Swipe.id).where(
            Swipe.swiper_id == swiper_id,
            Swipe.target_id == target_id,
            Swipe.direction == SwipeDirection.RIGHT.value,
        )
        return (await db_session.execute(stmt)).scalar_one_or_none() is not None

    async def _get_active_match(
        self,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match | None:
        stmt = select(Match).where(
            Match.user_a_id == user_a_id,
            Match.user_b_id == user_b_id,
            Match.is_active.is_(True),
        )
        return (await db_session.execute(stmt)).scalar_one_or_none()

    async def _lock_pair(
        self,
        first: uuid.UUID,
        second: uuid.UUID,
        db_session: AsyncSession,
    ) -> None:
        if db_session.get_bind().dialect.name != "postgresql":
            return
        await db_session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": pair_lock_key(first, second)},
        )
