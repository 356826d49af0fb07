"""
Spark — Session Registry.

Maps each live connection id to the verified user id it was opened with.
A user may hold several connections at once (tabs, devices); dropping one
leaves the others untouched.  Only the owning connection's lifecycle
(bind on connect, unbind on disconnect) mutates an entry.
"""

from __future__ import annotations

import uuid
from collections import defaultdict

import structlog

logger = structlog.get_logger("spark.realtime.sessions")


class SessionRegistry:
    def __init__(self) -> None:
        self._user_by_connection: dict[str, uuid.UUID] = {}
        self._connections_by_user: dict[uuid.UUID, set[str]] = defaultdict(set)

    def bind(self, connection_id: str, user_id: uuid.UUID) -> None:
        if connection_id in self._user_by_connection:
            raise ValueError(f"Connection {connection_id} is already bound")
        self._user_by_connection[connection_id] = user_id
        self._connections_by_user[user_id].add(connection_id)
        logger.debug(
            "session_bound",
            connection_id=connection_id,
            user_id=str(user_id),
            user_connections=len(self._connections_by_user[user_id]),
        )

    def unbind(self, connection_id: str) -> uuid.UUID | None:
        """Forget a connection.  Idempotent; returns the user it belonged to."""
        user_id = self._user_by_connection.pop(connection_id, None)
        if user_id is None:
            return None
        remaining = self._connections_by_user.get(user_id)
        if remaining is not None:
            remaining.discard(connection_id)
            if not remaining:
                del self._connections_by_user[user_id]
        logger.debug("session_unbound", connection_id=connection_id, user_id=str(user_id))
        return user_id

    def user_for(self, connection_id: str) -> uuid.UUID | None:
        return self._user_by_connection.get(connection_id)

    def connections_for(self, user_id: uuid.UUID) -> frozenset[str]:
        return frozenset(self._connections_by_user.get(user_id, ()))

    def is_online(self, user_id: uuid.UUID) -> bool:
        return bool(self._connections_by_user.get(user_id))

    def online_users(self) -> set[uuid.UUID]:
        return set(self._connections_by_user)

    def __len__(self) -> int:
        return len(self._user_by_connection)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._user_by_connection
