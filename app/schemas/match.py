from datetime import datetime
from typing import Optional
from uuid import UUID

from app.schemas.base import CamelModel
from app.schemas.chat import MessageResponse
from app.schemas.profile import ProfileResponse


class MatchResponse(CamelModel):
    id: UUID
    user_a_id: UUID
    user_b_id: UUID
    is_active: bool
    matched_at: datetime
    unmatched_at: Optional[datetime] = None


class MatchWithPartner(MatchResponse):
    partner_id: UUID
    partner: Optional[ProfileResponse] = None
    partner_online: bool = False
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0


class MatchListResponse(CamelModel):
    matches: list[MatchWithPartner]
    count: int


class UnmatchResponse(CamelModel):
    message: str
    match: MatchResponse
