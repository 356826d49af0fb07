from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import Field, model_validator

from app.models.profile import Gender
from app.schemas.base import CamelModel

InterestedIn = Literal["male", "female", "other", "any"]


class ProfileResponse(CamelModel):
    id: UUID
    user_id: UUID
    name: str
    age: int
    bio: str = ""
    profile_photo: Optional[str] = None
    gender: Gender
    interested_in: Optional[InterestedIn] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    max_distance: int
    min_age_preference: int
    max_age_preference: int
    updated_at: datetime


class CandidateProfile(ProfileResponse):
    distance_km: Optional[float] = None


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    age: Optional[int] = Field(None, ge=18, le=120)
    bio: Optional[str] = Field(None, max_length=500)
    gender: Optional[Gender] = None
    interested_in: Optional[InterestedIn] = None
    location: Optional[str] = Field(None, max_length=120)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    max_distance: Optional[int] = Field(None, ge=1, le=500)
    min_age_preference: Optional[int] = Field(None, ge=18, le=120)
    max_age_preference: Optional[int] = Field(None, ge=18, le=120)

    @model_validator(mode="after")
    def _age_preferences_ordered(self) -> "ProfileUpdate":
        lo, hi = self.min_age_preference, self.max_age_preference
        if lo is not None and hi is not None and lo > hi:
            raise ValueError("minAgePreference must not exceed maxAgePreference")
        return self
