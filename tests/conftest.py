"""Shared pytest fixtures for Spark tests.

Service tests run against an in-memory SQLite database (aiosqlite) that is
created fresh for every test.  The environment is primed before any ``app``
import because settings and the module-level engine read it at import time.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes!!")
os.environ.setdefault("REDIS_URL", "")

import uuid

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base, enable_sqlite_savepoints
from app.models.profile import Profile
from app.models.user import User
from app.services.swipe_service import SwipeService


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    """Create an active user with a profile.  Extra kwargs go to Profile."""

    async def _make(
        name: str = "Alex",
        age: int = 25,
        gender: str = "other",
        *,
        email: str | None = None,
        is_active: bool = True,
        **profile_fields,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password_hash="not-a-real-hash",
            is_active=is_active,
        )
        db.add(user)
        await db.flush()
        db.add(Profile(user_id=user.id, name=name, age=age, gender=gender, **profile_fields))
        await db.flush()
        return user

    return _make


@pytest.fixture
def make_match(db):
    """Create an active match between two existing users."""

    async def _make(first: User, second: User):
        match, _ = await SwipeService().create_match(first.id, second.id, db)
        return match

    return _make
