from datetime import datetime
from uuid import UUID

from pydantic import Field

from app.schemas.base import CamelModel


class SendMessageRequest(CamelModel):
    content: str = Field(min_length=1, max_length=2000)


class MessageResponse(CamelModel):
    id: UUID
    match_id: UUID
    sender_id: UUID
    content: str
    is_read: bool
    sent_at: datetime


class MessageListResponse(CamelModel):
    messages: list[MessageResponse]
    total: int
    unread_count: int


class UnreadCountResponse(CamelModel):
    unread_count: int
