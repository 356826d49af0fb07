"""
Spark — Shared API dependencies.

Service singletons, the bearer-token guard, and accessors for the
per-process realtime objects kept on ``app.state.realtime``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.realtime.broadcaster import Broadcaster
from app.realtime.gateway import Realtime
from app.services.auth_service import AuthService
from app.services.chat_service import ChatService
from app.services.discovery_service import DiscoveryService
from app.services.identity_service import IdentityService, bearer_token
from app.services.match_service import MatchService
from app.services.profile_service import ProfileService
from app.services.swipe_service import SwipeService

# ── Service singletons ────────────────────────────────────────────────────────

_identity_service: IdentityService | None = None
_auth_service: AuthService | None = None
_profile_service: ProfileService | None = None
_discovery_service: DiscoveryService | None = None
_swipe_service: SwipeService | None = None


def get_identity_service() -> IdentityService:
    global _identity_service
    if _identity_service is None:
        _identity_service = IdentityService()
    return _identity_service


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService(identity=get_identity_service())
    return _auth_service


def get_profile_service() -> ProfileService:
    global _profile_service
    if _profile_service is None:
        _profile_service = ProfileService()
    return _profile_service


def get_discovery_service() -> DiscoveryService:
    global _discovery_service
    if _discovery_service is None:
        _discovery_service = DiscoveryService()
    return _discovery_service


def get_swipe_service() -> SwipeService:
    global _swipe_service
    if _swipe_service is None:
        _swipe_service = SwipeService()
    return _swipe_service


# ── Realtime ──────────────────────────────────────────────────────────────────

def get_realtime(request: Request) -> Realtime:
    return request.app.state.realtime


def get_broadcaster(realtime: Realtime = Depends(get_realtime)) -> Broadcaster:
    return realtime.broadcaster


def get_match_service(realtime: Realtime = Depends(get_realtime)) -> MatchService:
    """Match reads annotated with this process's presence information."""
    return MatchService(is_online=realtime.registry.is_online)


def get_chat_service(
    match_service: MatchService = Depends(get_match_service),
) -> ChatService:
    return ChatService(match_service=match_service)


# ── Authentication ────────────────────────────────────────────────────────────

async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> uuid.UUID:
    """Resolve the bearer token to an active user's id (401 otherwise)."""
    user_id = get_identity_service().verify_token(bearer_token(authorization))
    await get_auth_service().get_active_user(user_id, db)
    return user_id
