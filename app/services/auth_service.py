"""
Spark — Registration and login.

Creates the ``User`` + ``Profile`` pair in one flush and hands back a token
from ``IdentityService``.  Password hashing is delegated to werkzeug.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from app.models.profile import INTEREST_ANY, Gender, Profile
from app.models.user import User
from app.services.errors import (
    ConflictError,
    InvalidArgumentError,
    UnauthorizedError,
)
from app.services.identity_service import IdentityService
from app.utils.clock import utcnow

logger = structlog.get_logger("spark.auth_service")

MIN_AGE = 18


class AuthService:
    def __init__(self, identity: IdentityService | None = None) -> None:
        self.identity = identity or IdentityService()

    async def register(
        self,
        db_session: AsyncSession,
        *,
        email: str,
        password: str,
        name: str,
        age: int,
        bio: Optional[str] = None,
        gender: Optional[str] = None,
        interested_in: Optional[str] = None,
    ) -> tuple[User, Profile, str]:
        """Create an account with its profile and return a fresh token."""
        email = email.strip().lower()
        log = logger.bind(email=email)
        log.info("register_start")

        if age < MIN_AGE:
            raise InvalidArgumentError("You must be at least 18 years old")

        existing = await db_session.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            log.warning("register_duplicate_email")
            raise ConflictError("Email already registered")

        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=generate_password_hash(password),
        )
        profile = Profile(
            user_id=user.id,
            name=name,
            age=age,
            bio=bio or "",
            gender=Gender(gender).value if gender else Gender.OTHER.value,
            interested_in=None if interested_in in (None, INTEREST_ANY) else interested_in,
        )

        try:
            async with db_session.begin_nested():
                db_session.add(user)
                await db_session.flush()
                db_session.add(profile)
                await db_session.flush()
        except IntegrityError as exc:
            log.warning("register_integrity_error")
            raise ConflictError("Email already registered") from exc

        token = self.identity.issue_token(user.id, user.email)
        log.info("register_complete", user_id=str(user.id))
        return user, profile, token

    async def login(
        self,
        db_session: AsyncSession,
        *,
        email: str,
        password: str,
    ) -> tuple[User, str]:
        email = email.strip().lower()
        result = await db_session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None or not check_password_hash(user.password_hash, password):
            logger.info("login_failed", email=email)
            raise UnauthorizedError("Invalid credentials")

        if not user.is_active:
            raise UnauthorizedError("Account is deactivated")

        user.last_active = utcnow()
        await db_session.flush()

        logger.info("login_complete", user_id=str(user.id))
        return user, self.identity.issue_token(user.id, user.email)

    async def get_active_user(
        self,
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> User:
        """Resolve a verified identity to an active account."""
        user = await db_session.get(User, user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("User not found or inactive")
        return user

