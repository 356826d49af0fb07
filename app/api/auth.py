"""
Spark — Auth API

Registration, login and the current-account lookup.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_auth_service, get_current_user_id
from app.database import get_db
from app.models.profile import Profile
from app.models.user import User
from app.schemas.profile import ProfileResponse
from app.schemas.user import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from app.services.auth_service import AuthService

logger = structlog.get_logger("spark.api.auth")

router = APIRouter()


def _user_response(user: User, profile: Profile | None) -> UserResponse:
    response = UserResponse.model_validate(user)
    if profile is not None:
        response.profile = ProfileResponse.model_validate(profile)
    return response


# ──────────────────────────────────────────────────────────────────────────────
# POST /register: Create an account and its profile
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, profile, token = await auth.register(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        age=payload.age,
        bio=payload.bio,
        gender=payload.gender.value if payload.gender else None,
        interested_in=payload.interested_in,
    )
    return AuthResponse(user=_user_response(user, profile), token=token)


# ──────────────────────────────────────────────────────────────────────────────
# POST /login: Exchange credentials for a token
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/login", response_model=AuthResponse, summary="Log in")
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    user, token = await auth.login(db, email=payload.email, password=payload.password)
    profile = (
        await db.execute(select(Profile).where(Profile.user_id == user.id))
    ).scalar_one_or_none()
    return AuthResponse(user=_user_response(user, profile), token=token)


# ──────────────────────────────────────────────────────────────────────────────
# GET /me: Current account
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/me", response_model=UserResponse, summary="Current account")
async def me(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await db.get(User, user_id)
    profile = (
        await db.execute(select(Profile).where(Profile.user_id == user_id))
    ).scalar_one_or_none()
    return _user_response(user, profile)
