"""Tests for AuthService — registration and login."""
import pytest
from sqlalchemy import select

from app.models.profile import Profile
from app.services.auth_service import AuthService
from app.services.errors import ConflictError, InvalidArgumentError, UnauthorizedError


@pytest.fixture
def auth():
    return AuthService()


async def _register(auth, db, email="Sam@Example.com", **overrides):
    fields = {"password": "secret123", "name": "Sam", "age": 27}
    fields.update(overrides)
    return await auth.register(db, email=email, **fields)


class TestRegister:
    async def test_creates_user_profile_and_token(self, auth, db):
        user, profile, token = await _register(
            auth, db, gender="female", interested_in="male", bio="hi"
        )
        assert user.email == "sam@example.com"
        assert user.password_hash != "secret123"
        assert profile.user_id == user.id
        assert (profile.name, profile.age, profile.gender) == ("Sam", 27, "female")
        assert profile.interested_in == "male"
        assert auth.identity.verify_token(token) == user.id

        stored = (
            await db.execute(select(Profile).where(Profile.user_id == user.id))
        ).scalar_one()
        assert stored.bio == "hi"

    async def test_any_interest_stored_as_null(self, auth, db):
        _, profile, _ = await _register(auth, db, interested_in="any")
        assert profile.interested_in is None

    async def test_duplicate_email_is_case_insensitive(self, auth, db):
        await _register(auth, db, email="sam@example.com")
        with pytest.raises(ConflictError):
            await _register(auth, db, email="SAM@example.com")

    async def test_minors_rejected(self, auth, db):
        with pytest.raises(InvalidArgumentError):
            await _register(auth, db, age=17)


class TestLogin:
    async def test_valid_credentials(self, auth, db):
        registered, _, _ = await _register(auth, db)
        user, token = await auth.login(db, email="SAM@example.com", password="secret123")
        assert user.id == registered.id
        assert user.last_active is not None
        assert auth.identity.verify_token(token) == user.id

    async def test_wrong_password(self, auth, db):
        await _register(auth, db)
        with pytest.raises(UnauthorizedError):
            await auth.login(db, email="sam@example.com", password="nope")

    async def test_unknown_email(self, auth, db):
        with pytest.raises(UnauthorizedError):
            await auth.login(db, email="ghost@example.com", password="secret123")

    async def test_deactivated_account(self, auth, db):
        user, _, _ = await _register(auth, db)
        user.is_active = False
        await db.flush()
        with pytest.raises(UnauthorizedError):
            await auth.login(db, email="sam@example.com", password="secret123")

    async def test_get_active_user(self, auth, db):
        user, _, _ = await _register(auth, db)
        assert (await auth.get_active_user(user.id, db)).id == user.id
        user.is_active = False
        await db.flush()
        with pytest.raises(UnauthorizedError):
            await auth.get_active_user(user.id, db)
