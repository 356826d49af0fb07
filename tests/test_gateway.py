"""Tests for ChatGateway — handshake, room events and fan-out."""
import asyncio
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select

from app.models.message import Message
from app.realtime.broadcaster import match_room, user_room
from app.realtime.gateway import build_realtime
from app.services.errors import UnauthorizedError


class _Socket:
    def __init__(self):
        self.frames = []

    async def send(self, frame):
        self.frames.append(frame)

    def events(self):
        return [f["event"] for f in self.frames]

    def of(self, event):
        return [f["data"] for f in self.frames if f["event"] == event]


@pytest.fixture
def realtime(session_factory):
    return build_realtime(session_factory)


@pytest.fixture
def gateway(realtime):
    return realtime.gateway


@pytest.fixture
async def couple(db, make_user, make_match):
    """Two matched users, committed so the gateway's own sessions see them."""
    a, b = await make_user("Ana"), await make_user("Ben")
    match = await make_match(a, b)
    await db.commit()
    return a, b, match


@pytest.fixture
async def open_socket(gateway):
    opened = []

    async def _open(user):
        socket = _Socket()
        token = gateway.identity.issue_token(user.id, user.email)
        conn = await gateway.connect(token, socket.send)
        opened.append(conn)
        return conn, socket

    yield _open
    for conn in opened:
        await gateway.disconnect(conn)


async def _send(gateway, conn, event, data, ack=1):
    reply = await gateway.dispatch(conn, {"event": event, "data": data, "ack": ack})
    return reply["data"] if reply else None


class TestHandshake:
    async def test_valid_token_binds_and_joins_personal_room(self, realtime, couple, open_socket):
        a, _, _ = couple
        conn, _ = await open_socket(a)
        assert realtime.registry.user_for(conn.id) == a.id
        assert realtime.registry.is_online(a.id)
        assert realtime.broadcaster.in_room(conn.id, user_room(a.id))

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_bad_token_leaves_no_session(self, realtime, gateway, token):
        with pytest.raises(UnauthorizedError):
            await gateway.connect(token, _Socket().send)
        assert len(realtime.registry) == 0

    async def test_deactivated_user_rejected(self, realtime, gateway, db, make_user):
        user = await make_user("Gone", is_active=False)
        await db.commit()
        token = gateway.identity.issue_token(user.id, user.email)
        with pytest.raises(UnauthorizedError):
            await gateway.connect(token, _Socket().send)
        assert len(realtime.registry) == 0

    async def test_slow_verification_times_out(self, realtime, gateway):
        async def _stall(token):
            await asyncio.sleep(5)

        gateway.auth_timeout = 0.01
        gateway._authenticate = _stall
        with pytest.raises(UnauthorizedError):
            await gateway.connect("anything", _Socket().send)
        assert len(realtime.registry) == 0

    async def test_disconnect_unbinds(self, realtime, gateway, couple):
        a, _, _ = couple
        token = gateway.identity.issue_token(a.id, a.email)
        conn = await gateway.connect(token, _Socket().send)
        await gateway.disconnect(conn)
        assert not realtime.registry.is_online(a.id)
        assert realtime.broadcaster.members(user_room(a.id)) == frozenset()


class TestJoinAndLeave:
    async def test_party_joins_match_room(self, realtime, gateway, couple, open_socket):
        a, _, match = couple
        conn, _ = await open_socket(a)
        reply = await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})
        assert reply == {"success": True, "matchId": str(match.id)}
        assert realtime.broadcaster.in_room(conn.id, match_room(match.id))

    async def test_outsider_rejected_without_dropping_connection(
        self, realtime, gateway, couple, db, make_user, open_socket
    ):
        _, _, match = couple
        outsider = await make_user("Eve")
        await db.commit()
        conn, _ = await open_socket(outsider)

        reply = await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})
        assert reply["success"] is False
        assert reply["error"] == "forbidden"
        assert not realtime.broadcaster.in_room(conn.id, match_room(match.id))
        assert realtime.registry.user_for(conn.id) == outsider.id

    async def test_inactive_match_cannot_be_joined(self, gateway, couple, session_factory, open_socket):
        a, _, match = couple
        async with session_factory() as session:
            await gateway.chat_service.match_service.unmatch(match.id, a.id, session)
            await session.commit()
        conn, _ = await open_socket(a)

        reply = await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})
        assert reply["error"] == "not_found"

    async def test_leave_is_idempotent(self, realtime, gateway, couple, open_socket):
        a, _, match = couple
        conn, _ = await open_socket(a)
        await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})
        for _ in range(2):
            reply = await _send(gateway, conn, "leaveChat", {"matchId": str(match.id)})
            assert reply["success"] is True
        assert not realtime.broadcaster.in_room(conn.id, match_room(match.id))


class TestSendMessage:
    async def test_hello_reaches_partner_in_room(self, gateway, couple, session_factory, open_socket):
        a, b, match = couple
        conn_a, _ = await open_socket(a)
        conn_b, socket_b = await open_socket(b)
        await _send(gateway, conn_b, "joinChat", {"matchId": str(match.id)})

        reply = await _send(
            gateway, conn_a, "sendMessage", {"matchId": str(match.id), "content": "hello"}
        )
        await conn_b.flush()

        assert reply["success"] is True
        assert reply["message"]["content"] == "hello"

        [new_message] = socket_b.of("newMessage")
        assert new_message["matchId"] == str(match.id)
        assert new_message["message"]["content"] == "hello"
        assert new_message["message"]["isRead"] is False
        assert new_message["message"]["senderId"] == str(a.id)

        [notification] = socket_b.of("messageNotification")
        assert notification == {"matchId": str(match.id), "senderId": str(a.id), "preview": "hello"}

        async with session_factory() as session:
            unread = await gateway.chat_service.unread_for_match(match.id, b.id, session)
        assert unread == 1

    async def test_message_is_committed_before_fan_out(self, gateway, couple, session_factory, open_socket):
        a, _, match = couple
        conn_a, _ = await open_socket(a)
        await _send(gateway, conn_a, "sendMessage", {"matchId": str(match.id), "content": "saved"})

        async with session_factory() as session:
            contents = (await session.execute(select(Message.content))).scalars().all()
        assert contents == ["saved"]

    async def test_notification_preview_is_truncated(self, gateway, couple, open_socket):
        a, b, match = couple
        conn_a, _ = await open_socket(a)
        conn_b, socket_b = await open_socket(b)
        await _send(gateway, conn_a, "sendMessage", {"matchId": str(match.id), "content": "x" * 120})
        await conn_b.flush()
        [notification] = socket_b.of("messageNotification")
        assert notification["preview"] == "x" * 50

    async def test_invalid_payload_is_nacked(self, gateway, couple, open_socket):
        a, _, match = couple
        conn_a, _ = await open_socket(a)
        reply = await _send(gateway, conn_a, "sendMessage", {"matchId": str(match.id), "content": ""})
        assert reply["success"] is False
        assert reply["error"] == "invalid_argument"

    async def test_outsider_cannot_send(self, gateway, couple, db, make_user, open_socket):
        _, _, match = couple
        outsider = await make_user("Eve")
        await db.commit()
        conn, _ = await open_socket(outsider)
        reply = await _send(gateway, conn, "sendMessage", {"matchId": str(match.id), "content": "hi"})
        assert reply["error"] == "forbidden"


class TestMarkAsRead:
    async def test_returns_flipped_count(self, gateway, couple, open_socket):
        a, b, match = couple
        conn_a, _ = await open_socket(a)
        conn_b, _ = await open_socket(b)
        for text in ("one", "two"):
            await _send(gateway, conn_a, "sendMessage", {"matchId": str(match.id), "content": text})

        reply = await _send(gateway, conn_b, "markAsRead", {"matchId": str(match.id)})
        assert reply == {"success": True, "count": 2}


class TestTyping:
    async def test_requires_joined_room(self, gateway, couple, open_socket):
        a, _, match = couple
        conn_a, _ = await open_socket(a)
        reply = await _send(gateway, conn_a, "typing", {"matchId": str(match.id), "isTyping": True})
        assert reply["error"] == "forbidden"

    async def test_reaches_partner_but_not_typist(self, gateway, couple, open_socket):
        a, b, match = couple
        a_phone, a_phone_socket = await open_socket(a)
        a_laptop, a_laptop_socket = await open_socket(a)
        conn_b, socket_b = await open_socket(b)
        for conn in (a_phone, a_laptop, conn_b):
            await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})

        await _send(gateway, a_phone, "typing", {"matchId": str(match.id), "isTyping": True})
        for conn in (a_phone, a_laptop, conn_b):
            await conn.flush()

        assert socket_b.of("userTyping") == [
            {"userId": str(a.id), "matchId": str(match.id), "isTyping": True}
        ]
        assert "userTyping" not in a_laptop_socket.events()
        assert "userTyping" not in a_phone_socket.events()

    async def test_stops_after_unmatch(
        self, realtime, gateway, couple, session_factory, open_socket
    ):
        a, b, match = couple
        conn_a, _ = await open_socket(a)
        conn_b, socket_b = await open_socket(b)
        for conn in (conn_a, conn_b):
            await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})

        async with session_factory() as session:
            await gateway.chat_service.match_service.unmatch(match.id, b.id, session)
            await session.commit()

        reply = await _send(gateway, conn_a, "typing", {"matchId": str(match.id), "isTyping": True})
        await conn_b.flush()

        assert reply["error"] == "not_found"
        assert socket_b.of("userTyping") == []
        assert not realtime.broadcaster.in_room(conn_a.id, match_room(match.id))


class TestDispatch:
    async def test_unknown_event(self, gateway, couple, open_socket):
        a, _, _ = couple
        conn, _ = await open_socket(a)
        reply = await _send(gateway, conn, "teleport", {})
        assert reply["error"] == "invalid_argument"

    async def test_inbound_event_name_is_bound_to_the_log_context(
        self, gateway, couple, open_socket
    ):
        a, _, _ = couple
        conn, _ = await open_socket(a)
        with patch("app.realtime.gateway.logger") as logger:
            await _send(gateway, conn, "teleport", {})
        logger.bind.assert_called_once_with(connection_id=conn.id, frame_event="teleport")
        logger.bind.return_value.info.assert_called_once_with("ws_unknown_event")

    async def test_no_ack_requested(self, gateway, couple, open_socket):
        a, _, match = couple
        conn, _ = await open_socket(a)
        reply = await gateway.dispatch(conn, {"event": "joinChat", "data": {"matchId": str(match.id)}})
        assert reply is None

    async def test_ack_echoes_id(self, gateway, couple, open_socket):
        a, _, match = couple
        conn, _ = await open_socket(a)
        reply = await gateway.dispatch(
            conn, {"event": "leaveChat", "data": {"matchId": str(match.id)}, "ack": "abc"}
        )
        assert reply["event"] == "ack"
        assert reply["ack"] == "abc"

    async def test_malformed_frame(self, gateway, couple, open_socket):
        a, _, _ = couple
        conn, _ = await open_socket(a)
        reply = await gateway.dispatch(conn, {"data": {}})
        assert reply["event"] == "error"
        assert reply["data"]["error"] == "invalid_argument"

    async def test_bad_match_id(self, gateway, couple, open_socket):
        a, _, _ = couple
        conn, _ = await open_socket(a)
        reply = await _send(gateway, conn, "joinChat", {"matchId": "not-a-uuid"})
        assert reply["error"] == "invalid_argument"

    async def test_unbound_connection_is_refused(self, gateway, couple, open_socket):
        a, _, match = couple
        conn, _ = await open_socket(a)
        gateway.registry.unbind(conn.id)
        reply = await _send(gateway, conn, "joinChat", {"matchId": str(match.id)})
        assert reply["error"] == "unauthorized"
        gateway.registry.bind(conn.id, a.id)
