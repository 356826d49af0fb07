from typing import Optional
from uuid import UUID

from pydantic import Field, model_validator

from app.models.match import SwipeDirection
from app.schemas.base import CamelModel
from app.schemas.match import MatchWithPartner
from app.schemas.profile import CandidateProfile


class DiscoveryFilters(CamelModel):
    """Optional, independently bounded discovery filters."""

    min_age: Optional[int] = Field(None, ge=18, le=120)
    max_age: Optional[int] = Field(None, ge=18, le=120)
    max_distance: Optional[int] = Field(None, ge=1, le=500, description="kilometres")
    limit: Optional[int] = Field(None, ge=1, le=50)

    @model_validator(mode="after")
    def _age_range_ordered(self) -> "DiscoveryFilters":
        if (
            self.min_age is not None
            and self.max_age is not None
            and self.min_age > self.max_age
        ):
            raise ValueError("minAge must not exceed maxAge")
        return self


class DiscoveryResponse(CamelModel):
    profiles: list[CandidateProfile]
    count: int


class SwipeRequest(CamelModel):
    target_user_id: UUID
    direction: SwipeDirection


class SwipeResponse(CamelModel):
    message: str
    is_match: bool
    match: Optional[MatchWithPartner] = None


class SwipeStats(CamelModel):
    total_swipes: int
    likes: int
    skips: int
    received_likes: int
