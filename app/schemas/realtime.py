from typing import Any, Optional, Union
from uuid import UUID

from pydantic import Field

from app.schemas.base import CamelModel


class InboundFrame(CamelModel):
    """Envelope of every client -> server realtime frame."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    ack: Optional[Union[int, str]] = None


class RoomPayload(CamelModel):
    match_id: UUID


class SendMessagePayload(CamelModel):
    match_id: UUID
    content: str = Field(min_length=1, max_length=2000)


class TypingPayload(CamelModel):
    match_id: UUID
    is_typing: bool
