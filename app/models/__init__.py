"""
Spark — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User
from app.models.profile import Gender, Profile
from app.models.match import Match, Swipe, SwipeDirection
from app.models.message import Message

__all__ = [
    "User",
    "Gender",
    "Profile",
    "Match",
    "Swipe",
    "SwipeDirection",
    "Message",
]
