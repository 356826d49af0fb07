"""
Spark — Realtime Chat Gateway

Authenticated, room-based event dispatch for live chat.

Handshake
---------
The client presents a token (query string or ``Authorization`` header).  It
is verified, and the account checked active, within
``WS_AUTH_TIMEOUT_SECONDS``.  On failure nothing is registered and the
caller closes the socket.  On success the connection is bound in the
session registry and joined to its personal ``user:<id>`` room.

Events (client -> server)
-------------------------
``joinChat``     party check on an active match, then join ``match:<id>``
``leaveChat``    leave the match room (idempotent)
``sendMessage``  persist, commit, then fan out ``newMessage`` and
                 ``messageNotification``
``markAsRead``   flip the counterpart's unread messages to read
``typing``       relay ``userTyping`` to the room, never back to the typist;
                 only from a connection that joined that room, and only
                 while the match is still active

Each handler answers with ``{"success": True, ...}`` or
``{"success": False, "error": <kind>, "message": <text>}``.  A failed
event never tears the connection down.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.models.match import Match
from app.models.message import Message
from app.realtime.broadcaster import Broadcaster, Connection, SendFn, match_room, user_room
from app.realtime.sessions import SessionRegistry
from app.schemas.chat import MessageResponse
from app.schemas.realtime import InboundFrame, RoomPayload, SendMessagePayload, TypingPayload
from app.services.auth_service import AuthService
from app.services.chat_service import ChatService
from app.services.errors import ForbiddenError, NotFoundError, SparkError, UnauthorizedError
from app.services.identity_service import IdentityService
from app.services.match_service import MatchService

logger = structlog.get_logger("spark.realtime.gateway")

Handler = Callable[[Connection, uuid.UUID, dict[str, Any]], Awaitable[dict[str, Any]]]


def _failure(kind: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": kind, "message": message}


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class ChatGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        identity: IdentityService | None = None,
        auth_service: AuthService | None = None,
        chat_service: ChatService | None = None,
        auth_timeout: float | None = None,
        queue_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.registry = registry
        self.broadcaster = broadcaster
        self.identity = identity or IdentityService()
        self.auth_service = auth_service or AuthService(identity=self.identity)
        self.chat_service = chat_service or ChatService(
            match_service=MatchService(is_online=registry.is_online)
        )
        self.auth_timeout = auth_timeout or settings.WS_AUTH_TIMEOUT_SECONDS
        self.queue_size = queue_size or settings.WS_SEND_QUEUE_SIZE
        self._handlers: dict[str, Handler] = {
            "joinChat": self._join_chat,
            "leaveChat": self._leave_chat,
            "sendMessage": self._send_message,
            "markAsRead": self._mark_as_read,
            "typing": self._typing,
        }

    @property
    def events(self) -> frozenset[str]:
        return frozenset(self._handlers)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def connect(self, token: str | None, send: SendFn) -> Connection:
        """Authenticate a new socket and register it.

        Raises
        ------
        UnauthorizedError
            Bad, expired or missing token, inactive account, or the check
            did not finish within the handshake timeout.
        """
        try:
            user_id = await asyncio.wait_for(self._authenticate(token), self.auth_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("ws_auth_timeout", timeout=self.auth_timeout)
            raise UnauthorizedError("Authentication timed out") from exc

        connection = Connection(uuid.uuid4().hex, send, queue_size=self.queue_size)
        self.registry.bind(connection.id, user_id)
        self.broadcaster.attach(connection)
        self.broadcaster.join(connection.id, user_room(user_id))
        connection.start()

        logger.info(
            "ws_connected",
            connection_id=connection.id,
            user_id=str(user_id),
            active_connections=len(self.registry),
        )
        return connection

    async def disconnect(self, connection: Connection) -> None:
        user_id = self.registry.unbind(connection.id)
        self.broadcaster.detach(connection.id)
        await connection.close()
        logger.info(
            "ws_disconnected",
            connection_id=connection.id,
            user_id=str(user_id) if user_id else None,
        )

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def dispatch(self, connection: Connection, raw: Any) -> dict[str, Any] | None:
        """Handle one inbound frame.

        Returns the ack frame to send back when the client asked for one
        (``ack`` present), otherwise ``None``.
        """
        try:
            frame = InboundFrame.model_validate(raw)
        except ValidationError as exc:
            logger.info("ws_bad_frame", connection_id=connection.id)
            return {"event": "error", "data": _failure("invalid_argument", _validation_message(exc))}

        result = await self.handle(connection, frame.event, frame.data)
        if frame.ack is None:
            return None
        return {"event": "ack", "ack": frame.ack, "data": result}

    async def handle(
        self,
        connection: Connection,
        event: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        log = logger.bind(connection_id=connection.id, frame_event=event)

        user_id = self.registry.user_for(connection.id)
        if user_id is None:
            return _failure(UnauthorizedError.kind, "Connection is not authenticated")

        handler = self._handlers.get(event)
        if handler is None:
            log.info("ws_unknown_event")
            return _failure("invalid_argument", f"Unknown event: {event}")

        try:
            return await handler(connection, user_id, data)
        except ValidationError as exc:
            return _failure("invalid_argument", _validation_message(exc))
        except SparkError as exc:
            log.info("ws_event_rejected", user_id=str(user_id), error=exc.kind)
            return _failure(exc.kind, exc.message)
        except Exception:
            log.exception("ws_event_failed", user_id=str(user_id))
            return _failure("internal", "Failed to process event")

    # ── Handlers ─────────────────────────────────────────────────────────

    async def _join_chat(self, connection: Connection, user_id: uuid.UUID, data: dict) -> dict:
        payload = RoomPayload.model_validate(data)
        async with self.session_factory() as session:
            await self.chat_service.match_service.load_for_party(
                payload.match_id, user_id, session
            )
        self.broadcaster.join(connection.id, match_room(payload.match_id))
        logger.debug("ws_joined_chat", connection_id=connection.id, match_id=str(payload.match_id))
        return {"success": True, "matchId": str(payload.match_id)}

    async def _leave_chat(self, connection: Connection, user_id: uuid.UUID, data: dict) -> dict:
        payload = RoomPayload.model_validate(data)
        self.broadcaster.leave(connection.id, match_room(payload.match_id))
        return {"success": True, "matchId": str(payload.match_id)}

    async def _send_message(self, connection: Connection, user_id: uuid.UUID, data: dict) -> dict:
        payload = SendMessagePayload.model_validate(data)
        async with self.session_factory() as session:
            message, match = await self.chat_service.send(
                payload.match_id, user_id, payload.content, session
            )
            await session.commit()

        wire = publish_message(self.broadcaster, self.chat_service, message, match)
        return {"success": True, "message": wire}

    async def _mark_as_read(self, connection: Connection, user_id: uuid.UUID, data: dict) -> dict:
        payload = RoomPayload.model_validate(data)
        async with self.session_factory() as session:
            count = await self.chat_service.mark_as_read(payload.match_id, user_id, session)
            await session.commit()
        return {"success": True, "count": count}

    async def _typing(self, connection: Connection, user_id: uuid.UUID, data: dict) -> dict:
        payload = TypingPayload.model_validate(data)
        room = match_room(payload.match_id)
        if not self.broadcaster.in_room(connection.id, room):
            raise ForbiddenError("Join the chat before sending typing indicators")
        async with self.session_factory() as session:
            try:
                await self.chat_service.match_service.load_for_party(
                    payload.match_id, user_id, session
                )
            except NotFoundError:
                # unmatched since joining
                self.broadcaster.leave(connection.id, room)
                raise
        self.broadcaster.emit_typing(payload.match_id, user_id, payload.is_typing)
        return {"success": True}

    # ── Private helpers ──────────────────────────────────────────────────

    async def _authenticate(self, token: str | None) -> uuid.UUID:
        user_id = self.identity.verify_token(token)
        async with self.session_factory() as session:
            await self.auth_service.get_active_user(user_id, session)
        return user_id


def publish_message(
    broadcaster: Broadcaster,
    chat_service: ChatService,
    message: Message,
    match: Match,
) -> dict[str, Any]:
    """Fan out a committed message; returns its wire form.

    Shared by the realtime ``sendMessage`` event and ``POST /chat/{id}``.
    """
    wire = MessageResponse.model_validate(message).to_wire()
    broadcaster.emit_new_message(
        match.id,
        wire,
        sender_id=message.sender_id,
        recipient_id=match.partner_of(message.sender_id),
        preview=chat_service.preview(message.content),
    )
    return wire


@dataclass
class Realtime:
    """Everything one process needs for live delivery."""

    registry: SessionRegistry
    broadcaster: Broadcaster
    gateway: ChatGateway
    relay: Any = None


def build_realtime(
    session_factory: async_sessionmaker[AsyncSession],
    relay: Any = None,
) -> Realtime:
    registry = SessionRegistry()
    broadcaster = Broadcaster(registry, relay=relay)
    gateway = ChatGateway(session_factory, registry, broadcaster)
    return Realtime(registry=registry, broadcaster=broadcaster, gateway=gateway, relay=relay)
