"""
Spark — Chat Ledger

Stores messages per match and answers the read/unread questions the inbox
and conversation views ask.

Ordering contract: pages are fetched newest-first (so ``offset`` walks back
in time) and reversed before returning, so each page reads oldest-first.
``sent_at`` is assigned here, never by the client, and is bumped by one
microsecond when the clock has not moved past the match's latest message.
That keeps one sender's messages increasing; two concurrent sends in the
same match can still share a ``sent_at``, so every ordering breaks ties on
``id`` and pages never overlap or skip.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.match import Match
from app.models.message import Message
from app.services.errors import ForbiddenError, InvalidArgumentError
from app.services.match_service import MatchService
from app.utils.clock import as_utc, utcnow

logger = structlog.get_logger("spark.chat_service")

_TICK = timedelta(microseconds=1)


@dataclass
class MessagePage:
    messages: list[Message]
    total: int
    unread_count: int


class ChatService:
    """Message persistence and read-state bookkeeping."""

    def __init__(
        self,
        match_service: MatchService | None = None,
        max_length: int | None = None,
        preview_length: int | None = None,
    ) -> None:
        settings = get_settings()
        self.match_service = match_service or MatchService()
        self.max_length = max_length or settings.MESSAGE_MAX_LENGTH
        self.preview_length = preview_length or settings.MESSAGE_PREVIEW_LENGTH

    # ── Public API ────────────────────────────────────────────────────────

    async def list_messages(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
        limit: int = 50,
        offset: int = 0,
        mark_as_read: bool = True,
    ) -> MessagePage:
        """Return one page of the conversation, oldest first within the page.

        ``unread_count`` is measured before any marking.  With
        ``mark_as_read`` the counterpart's unread messages are flipped to
        read as a side effect.  Inactive matches stay readable.
        """
        if limit < 1 or offset < 0:
            raise InvalidArgumentError("limit must be >= 1 and offset >= 0")

        await self.match_service.load_for_party(
            match_id, user_id, db_session, include_inactive=True
        )

        total_stmt = select(func.count()).select_from(Message).where(
            Message.match_id == match_id
        )
        total = int((await db_session.execute(total_stmt)).scalar_one())

        page_stmt = (
            select(Message)
            .where(Message.match_id == match_id)
            .order_by(Message.sent_at.desc(), Message.id.desc())
            .limit(limit)
            .offset(offset)
        )
        messages = list((await db_session.execute(page_stmt)).scalars().all())
        messages.reverse()

        unread_count = await self.unread_for_match(match_id, user_id, db_session)

        if mark_as_read and unread_count:
            await self._mark_read(match_id, user_id, db_session)

        return MessagePage(messages=messages, total=total, unread_count=unread_count)

    async def send(
        self,
        match_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        db_session: AsyncSession,
    ) -> tuple[Message, Match]:
        """Persist a message.  Returns the message and its match.

        Raises
        ------
        InvalidArgumentError
            Empty (after stripping) or over-long content.
        NotFoundError / ForbiddenError
            Unknown match, sender not a party, or the match is inactive.
        """
        log = logger.bind(match_id=str(match_id), sender_id=str(sender_id))

        content = (content or "").strip()
        if not content:
            raise InvalidArgumentError("Message cannot be empty")
        if len(content) > self.max_length:
            raise InvalidArgumentError(
                f"Message must not exceed {self.max_length} characters"
            )

        match = await self.match_service.load_for_party(
            match_id, sender_id, db_session, include_inactive=True
        )
        if not match.is_active:
            log.info("send_to_inactive_match")
            raise ForbiddenError("Cannot send messages to an inactive match")

        message = Message(
            match_id=match_id,
            sender_id=sender_id,
            content=content,
            is_read=False,
            sent_at=await self._next_sent_at(match_id, db_session),
        )
        db_session.add(message)
        await db_session.flush()

        log.info("message_stored", message_id=str(message.id))
        return message, match

    async def mark_as_read(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        """Mark the counterpart's messages read; returns how many flipped."""
        await self.match_service.load_for_party(
            match_id, user_id, db_session, include_inactive=True
        )
        return await self._mark_read(match_id, user_id, db_session)

    async def unread_for_match(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        stmt = select(func.count()).select_from(Message).where(
            Message.match_id == match_id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        return int((await db_session.execute(stmt)).scalar_one())

    async def unread_total(self, user_id: uuid.UUID, db_session: AsyncSession) -> int:
        """Unread messages for ``user_id`` across all active matches."""
        active_matches = select(Match.id).where(
            or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
            Match.is_active.is_(True),
        )
        stmt = select(func.count()).select_from(Message).where(
            Message.match_id.in_(active_matches),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        return int((await db_session.execute(stmt)).scalar_one())

    async def last_message(
        self,
        match_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.match_id == match_id)
            .order_by(Message.sent_at.desc(), Message.id.desc())
            .limit(1)
        )
        return (await db_session.execute(stmt)).scalar_one_or_none()

    def preview(self, content: str) -> str:
        return content[: self.preview_length]

    # ── Private helpers ──────────────────────────────────────────────────

    async def _mark_read(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> int:
        stmt = (
            update(Message)
            .where(
                Message.match_id == match_id,
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
        )
        result = await db_session.execute(stmt)
        logger.debug(
            "messages_marked_read",
            match_id=str(match_id),
            user_id=str(user_id),
            count=result.rowcount,
        )
        return int(result.rowcount or 0)

    async def _next_sent_at(self, match_id: uuid.UUID, db_session: AsyncSession):
        now = utcnow()
        stmt = select(func.max(Message.sent_at)).where(Message.match_id == match_id)
        latest = as_utc((await db_session.execute(stmt)).scalar_one_or_none())
        if latest is not None and now <= latest:
            return latest + _TICK
        return now
