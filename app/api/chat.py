"""
Spark — Chat API

HTTP counterpart of the realtime chat events.  ``POST /{match_id}`` fans
out through the same broadcaster path as a realtime ``sendMessage``, after
the message has been committed.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_broadcaster, get_chat_service, get_current_user_id
from app.database import get_db
from app.realtime.broadcaster import Broadcaster
from app.realtime.gateway import publish_message
from app.schemas.chat import (
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from app.services.chat_service import ChatService

logger = structlog.get_logger("spark.api.chat")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /unread/count: Unread messages across all active matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/unread/count", response_model=UnreadCountResponse, summary="Unread total")
async def unread_count(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chat: ChatService = Depends(get_chat_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await chat.unread_total(user_id, db))


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id}: Conversation page
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{match_id}", response_model=MessageListResponse, summary="List messages")
async def list_messages(
    match_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    mark_as_read: bool = Query(True, alias="markAsRead"),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chat: ChatService = Depends(get_chat_service),
) -> MessageListResponse:
    """One page, oldest first.  ``unreadCount`` is taken before marking."""
    page = await chat.list_messages(
        match_id, user_id, db, limit=limit, offset=offset, mark_as_read=mark_as_read
    )
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in page.messages],
        total=page.total,
        unread_count=page.unread_count,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}: Send a message
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    match_id: uuid.UUID,
    payload: SendMessageRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chat: ChatService = Depends(get_chat_service),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> MessageResponse:
    message, match = await chat.send(match_id, user_id, payload.content, db)
    await db.commit()
    publish_message(broadcaster, chat, message, match)
    return MessageResponse.model_validate(message)
