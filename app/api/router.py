"""
Spark — Main API Router

Aggregates all HTTP sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.  The
realtime socket is mounted separately at the root.
"""

from fastapi import APIRouter

from app.api import auth, chat, discovery, matches, users

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(discovery.router, prefix="/discovery", tags=["Discovery"])
router.include_router(matches.router, prefix="/matches", tags=["Matches"])
router.include_router(chat.router, prefix="/chat", tags=["Chat"])
