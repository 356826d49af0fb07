"""
Spark — Identity provider (JWT issue / verify).

Every authenticated surface (HTTP bearer auth, the WebSocket handshake)
trusts the user id this service returns and nothing else.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import jwt
import structlog

from app.config import get_settings
from app.services.errors import UnauthorizedError
from app.utils.clock import utcnow

logger = structlog.get_logger("spark.identity_service")


class IdentityService:
    """Issue and verify signed access tokens."""

    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        expire_minutes: int | None = None,
    ) -> None:
        settings = get_settings()
        self.secret = secret or settings.JWT_SECRET
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.expire_minutes = expire_minutes or settings.JWT_EXPIRE_MINUTES

    def issue_token(self, user_id: uuid.UUID, email: str) -> str:
        now = utcnow()
        payload = {
            "sub": str(user_id),
            "email": email,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str | None) -> uuid.UUID:
        """Return the user id carried by ``token``.

        Raises
        ------
        UnauthorizedError
            If the token is missing, malformed, badly signed, or expired.
        """
        if not token:
            raise UnauthorizedError("Missing credentials")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.info("token_expired")
            raise UnauthorizedError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.info("token_invalid", error=str(exc))
            raise UnauthorizedError("Invalid token") from exc

        try:
            return uuid.UUID(str(payload["sub"]))
        except ValueError as exc:
            raise UnauthorizedError("Invalid token subject") from exc


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` value."""
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
