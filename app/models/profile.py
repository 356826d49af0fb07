"""
Spark — Profile model (the attributes discovery filters on).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.utils.clock import utcnow


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


# ``interested_in`` additionally accepts "any"; NULL means the same thing.
INTEREST_ANY = "any"


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("age >= 18", name="chk_profile_adult"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    age: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    bio: Mapped[str] = mapped_column(Text, default="", nullable=False)
    profile_photo: Mapped[str | None] = mapped_column(String, nullable=True)
    gender: Mapped[str] = mapped_column(
        String, default=Gender.OTHER.value, nullable=False,
        comment="male / female / other",
    )
    interested_in: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="male / female / other / any; NULL = any"
    )
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_distance: Mapped[int] = mapped_column(
        Integer, default=50, nullable=False, comment="kilometres"
    )
    min_age_preference: Mapped[int] = mapped_column(Integer, default=18, nullable=False)
    max_age_preference: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow,
        index=True, nullable=False,
    )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"<Profile user={self.user_id} age={self.age} gender={self.gender!r}>"
