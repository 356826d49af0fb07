"""
Spark — Realtime Broadcaster

Fans events out to rooms of live connections.

Rooms are plain strings:

  * ``match:<match_id>``  both parties, while they have the chat open
  * ``user:<user_id>``    every connection of one user (joined on connect)

Each connection owns a bounded outbound queue drained by a single writer
task, so frames reach a given socket in the order they were emitted and a
slow socket never blocks the emitter.  A full queue drops the frame and logs
it; delivery is best-effort and nothing is ever rolled back because of it.

When a relay is attached (multi-process deployments) ``emit`` publishes the
envelope to it and every process, this one included, delivers locally when
the envelope comes back.  Without a relay ``emit`` delivers locally at once.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Protocol

import structlog

from app.realtime.sessions import SessionRegistry

logger = structlog.get_logger("spark.realtime.broadcaster")

SendFn = Callable[[dict[str, Any]], Awaitable[None]]

EVENT_NEW_MESSAGE = "newMessage"
EVENT_MESSAGE_NOTIFICATION = "messageNotification"
EVENT_NEW_MATCH = "newMatch"
EVENT_USER_TYPING = "userTyping"


def match_room(match_id: uuid.UUID | str) -> str:
    return f"match:{match_id}"


def user_room(user_id: uuid.UUID | str) -> str:
    return f"user:{user_id}"


class Relay(Protocol):
    def publish(self, envelope: dict[str, Any]) -> None: ...


class Connection:
    """One live socket as seen by the broadcaster."""

    def __init__(self, connection_id: str, send: SendFn, queue_size: int = 256) -> None:
        self.id = connection_id
        self._send = send
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task | None = None
        self.closed = False

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"ws-writer-{self.id}")

    def push(self, frame: dict[str, Any]) -> bool:
        """Queue a frame without waiting.  Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                "outbound_queue_full",
                connection_id=self.id,
                frame_event=frame.get("event"),
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the socket."""
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None

    async def _drain(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                if not self.closed:
                    await self._send(frame)
            except Exception as exc:
                # The socket is gone; the read loop will notice and clean up.
                self.closed = True
                logger.warning(
                    "outbound_send_failed",
                    connection_id=self.id,
                    frame_event=frame.get("event"),
                    error=str(exc),
                )
            finally:
                self._queue.task_done()


class Broadcaster:
    """Room membership plus event fan-out for every local connection."""

    def __init__(self, registry: SessionRegistry, relay: Relay | None = None) -> None:
        self.registry = registry
        self.relay = relay
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}

    # ── Connections and rooms ────────────────────────────────────────────

    def attach(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        self._memberships.setdefault(connection.id, set())

    def detach(self, connection_id: str) -> None:
        """Drop a connection and its memberships.  Idempotent."""
        for room in self._memberships.pop(connection_id, set()):
            self._discard_member(room, connection_id)
        self._connections.pop(connection_id, None)

    def join(self, connection_id: str, room: str) -> None:
        if connection_id not in self._connections:
            raise KeyError(f"Unknown connection {connection_id}")
        self._rooms.setdefault(room, set()).add(connection_id)
        self._memberships[connection_id].add(room)

    def leave(self, connection_id: str, room: str) -> None:
        """Leave a room.  Leaving a room never joined is a no-op."""
        memberships = self._memberships.get(connection_id)
        if memberships is not None:
            memberships.discard(room)
        self._discard_member(room, connection_id)

    def clear_room(self, room: str) -> int:
        """Remove every local member of ``room``; returns how many left."""
        members = self._rooms.pop(room, set())
        for connection_id in members:
            memberships = self._memberships.get(connection_id)
            if memberships is not None:
                memberships.discard(room)
        return len(members)

    def in_room(self, connection_id: str, room: str) -> bool:
        return room in self._memberships.get(connection_id, ())

    def members(self, room: str) -> frozenset[str]:
        return frozenset(self._rooms.get(room, ()))

    # ── Emission ─────────────────────────────────────────────────────────

    def emit(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude_user: uuid.UUID | None = None,
    ) -> None:
        """Send ``event`` to everyone in ``room``.  Never blocks."""
        envelope = {
            "room": room,
            "frame": {"event": event, "data": data},
            "exclude_user": str(exclude_user) if exclude_user else None,
        }
        if self.relay is not None:
            self.relay.publish(envelope)
        else:
            self.deliver_envelope(envelope)

    def deliver_envelope(self, envelope: dict[str, Any]) -> int:
        """Deliver a relayed envelope to this process's connections."""
        exclude = envelope.get("exclude_user")
        return self.deliver_local(
            envelope["room"],
            envelope["frame"],
            exclude_user=uuid.UUID(exclude) if exclude else None,
        )

    def deliver_local(
        self,
        room: str,
        frame: dict[str, Any],
        exclude_user: uuid.UUID | None = None,
    ) -> int:
        delivered = 0
        for connection_id in self.members(room):
            if exclude_user is not None and self.registry.user_for(connection_id) == exclude_user:
                continue
            connection = self._connections.get(connection_id)
            if connection is not None and connection.push(frame):
                delivered += 1
        logger.debug(
            "event_delivered",
            room=room,
            frame_event=frame.get("event"),
            delivered=delivered,
        )
        return delivered

    def emit_new_message(
        self,
        match_id: uuid.UUID,
        message: dict[str, Any],
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        preview: str,
    ) -> None:
        """``newMessage`` to the match room plus a ``messageNotification``
        on the recipient's personal channel."""
        self.emit(
            match_room(match_id),
            EVENT_NEW_MESSAGE,
            {"message": message, "matchId": str(match_id)},
        )
        self.emit(
            user_room(recipient_id),
            EVENT_MESSAGE_NOTIFICATION,
            {"matchId": str(match_id), "senderId": str(sender_id), "preview": preview},
        )

    def emit_new_match(self, user_id: uuid.UUID, match: dict[str, Any]) -> None:
        self.emit(user_room(user_id), EVENT_NEW_MATCH, {"match": match})

    def emit_typing(self, match_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool) -> None:
        self.emit(
            match_room(match_id),
            EVENT_USER_TYPING,
            {"userId": str(user_id), "matchId": str(match_id), "isTyping": is_typing},
            exclude_user=user_id,
        )

    # ── Private helpers ──────────────────────────────────────────────────

    def _discard_member(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]
