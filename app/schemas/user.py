from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import EmailStr, Field

from app.models.profile import Gender
from app.schemas.base import CamelModel
from app.schemas.profile import InterestedIn, ProfileResponse


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=50)
    name: str = Field(min_length=2, max_length=50)
    age: int = Field(ge=18, le=120)
    bio: Optional[str] = Field(None, max_length=500)
    gender: Optional[Gender] = None
    interested_in: Optional[InterestedIn] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserResponse(CamelModel):
    id: UUID
    email: str
    is_active: bool
    last_active: Optional[datetime] = None
    created_at: datetime
    profile: Optional[ProfileResponse] = None


class AuthResponse(CamelModel):
    user: UserResponse
    token: str
    token_type: str = "bearer"
