"""
Spark — Match Store reads and lifecycle.

Matches are returned as explicit aggregates (``MatchView``) that resolve
the partner's profile by id instead of walking ORM relationships.  Unmatch
is a one-way soft transition: ``is_active`` flips to False and
``unmatched_at`` is stamped; nothing ever reactivates a row.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.match import Match, ordered_pair
from app.models.message import Message
from app.models.profile import Profile
from app.services.errors import ConflictError, ForbiddenError, NotFoundError
from app.utils.clock import utcnow

logger = structlog.get_logger("spark.match_service")


@dataclass
class MatchView:
    """A match seen from one party, with the counterpart resolved."""

    match: Match
    partner_id: uuid.UUID
    partner: Profile | None = None
    partner_online: bool = False
    last_message: Message | None = None
    unread_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.match.id,
            "user_a_id": self.match.user_a_id,
            "user_b_id": self.match.user_b_id,
            "is_active": self.match.is_active,
            "matched_at": self.match.matched_at,
            "unmatched_at": self.match.unmatched_at,
            "partner_id": self.partner_id,
            "partner": self.partner,
            "partner_online": self.partner_online,
            "last_message": self.last_message,
            "unread_count": self.unread_count,
        }


class MatchService:
    """Read API over the match store plus the unmatch transition.

    ``is_online`` is an optional presence probe (the session registry's
    ``is_online``) used to annotate listings.
    """

    def __init__(self, is_online: Callable[[uuid.UUID], bool] | None = None) -> None:
        self.is_online = is_online

    # ── Public API ────────────────────────────────────────────────────────

    async def list_matches(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> list[MatchView]:
        """Active matches for ``user_id``, newest first, each with the
        partner profile, last message and the viewer's unread count.

        Read-only: listing never changes read state.
        """
        stmt = (
            select(Match)
            .where(
                or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
                Match.is_active.is_(True),
            )
            .order_by(Match.matched_at.desc())
        )
        matches = (await db_session.execute(stmt)).scalars().all()
        if not matches:
            return []

        match_ids = [m.id for m in matches]
        partner_ids = [m.partner_of(user_id) for m in matches]

        profiles = await self._profiles_by_user(partner_ids, db_session)
        unread = await self._unread_by_match(match_ids, user_id, db_session)
        last_messages = await self._last_message_by_match(match_ids, db_session)

        views = [
            MatchView(
                match=m,
                partner_id=partner_id,
                partner=profiles.get(partner_id),
                partner_online=self._online(partner_id),
                last_message=last_messages.get(m.id),
                unread_count=unread.get(m.id, 0),
            )
            for m, partner_id in zip(matches, partner_ids)
        ]

        logger.info("list_matches_complete", user_id=str(user_id), count=len(views))
        return views

    async def get_match(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        include_inactive: bool = False,
    ) -> MatchView:
        """Fetch one match from ``user_id``'s point of view.

        Raises
        ------
        NotFoundError
            No such match (or it is inactive and ``include_inactive`` is off).
        ForbiddenError
            ``user_id`` is not one of the two parties.
        """
        match = await self.load_for_party(
            match_id, user_id, db_session, include_inactive=include_inactive
        )
        partner_id = match.partner_of(user_id)
        profiles = await self._profiles_by_user([partner_id], db_session)
        return MatchView(
            match=match,
            partner_id=partner_id,
            partner=profiles.get(partner_id),
            partner_online=self._online(partner_id),
        )

    async def load_for_party(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        include_inactive: bool = False,
    ) -> Match:
        """Return the bare ``Match`` row after the party check."""
        match = await db_session.get(Match, match_id)
        if match is None or (not match.is_active and not include_inactive):
            raise NotFoundError("Match not found")
        if not match.involves(user_id):
            logger.warning(
                "match_access_forbidden", match_id=str(match_id), user_id=str(user_id)
            )
            raise ForbiddenError("You are not part of this match")
        return match

    async def unmatch(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Match:
        """Deactivate a match.  Either party may do it; it cannot be undone."""
        log = logger.bind(match_id=str(match_id), user_id=str(user_id))

        match = await self.load_for_party(
            match_id, user_id, db_session, include_inactive=True
        )
        if not match.is_active:
            log.info("unmatch_already_inactive")
            raise ConflictError("Match is already unmatched")

        match.is_active = False
        match.unmatched_at = utcnow()
        await db_session.flush()

        log.info("unmatch_complete")
        return match

    async def are_matched(
        self,
        first: uuid.UUID,
        second: uuid.UUID,
        db_session: AsyncSession,
    ) -> bool:
        user_a_id, user_b_id = ordered_pair(first, second)
        stmt = select(Match.id).where(
            Match.user_a_id == user_a_id,
            Match.user_b_id == user_b_id,
            Match.is_active.is_(True),
        )
        return (await db_session.execute(stmt)).scalar_one_or_none() is not None

    async def count_matches(self, user_id: uuid.UUID, db_session: AsyncSession) -> int:
        stmt = select(func.count()).select_from(Match).where(
            or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
            Match.is_active.is_(True),
        )
        return int((await db_session.execute(stmt)).scalar_one())

    async def build_view(
        self,
        match: Match,
        viewer_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> MatchView:
        """Aggregate for a freshly created match (used by the swipe flow)."""
        partner_id = match.partner_of(viewer_id)
        profiles = await self._profiles_by_user([partner_id], db_session)
        return MatchView(
            match=match,
            partner_id=partner_id,
            partner=profiles.get(partner_id),
            partner_online=self._online(partner_id),
        )

    # ── Private helpers ──────────────────────────────────────────────────

    def _online(self, user_id: uuid.UUID) -> bool:
        return bool(self.is_online and self.is_online(user_id))

    async def _profiles_by_user(
        self,
        user_ids: list[uuid.UUID],
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, Profile]:
        stmt = select(Profile).where(Profile.user_id.in_(user_ids))
        return {p.user_id: p for p in (await db_session.execute(stmt)).scalars().all()}

    async def _unread_by_match(
        self,
        match_ids: list[uuid.UUID],
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, int]:
        stmt = (
            select(Message.match_id, func.count())
            .where(
                Message.match_id.in_(match_ids),
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
            .group_by(Message.match_id)
        )
        return {mid: int(n) for mid, n in (await db_session.execute(stmt)).all()}

    async def _last_message_by_match(
        self,
        match_ids: list[uuid.UUID],
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, Message]:
        latest = (
            select(Message.match_id, func.max(Message.sent_at).label("sent_at"))
            .where(Message.match_id.in_(match_ids))
            .group_by(Message.match_id)
            .subquery()
        )
        # ascending id so a sent_at tie resolves to the same row as last_message
        stmt = (
            select(Message)
            .join(
                latest,
                (Message.match_id == latest.c.match_id) & (Message.sent_at == latest.c.sent_at),
            )
            .order_by(Message.id)
        )
        return {m.match_id: m for m in (await db_session.execute(stmt)).scalars().all()}
