"""Tests for ChatService — message ledger and read state."""
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from app.models.message import Message
from app.services.chat_service import ChatService
from app.services.errors import ForbiddenError, InvalidArgumentError, NotFoundError
from app.services.match_service import MatchService
from app.utils.clock import as_utc


@pytest.fixture
def chat():
    return ChatService()


@pytest.fixture
async def pair(make_user, make_match):
    a, b = await make_user("A"), await make_user("B")
    match = await make_match(a, b)
    return a, b, match


class TestSend:
    async def test_stores_stripped_unread_message(self, chat, db, pair):
        a, b, match = pair
        message, returned_match = await chat.send(match.id, a.id, "  hello  ", db)
        assert message.content == "hello"
        assert message.is_read is False
        assert message.sender_id == a.id
        assert returned_match.id == match.id
        assert await chat.unread_for_match(match.id, b.id, db) == 1

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    async def test_blank_content_rejected(self, chat, db, pair, content):
        a, _, match = pair
        with pytest.raises(InvalidArgumentError):
            await chat.send(match.id, a.id, content, db)

    async def test_length_limit(self, chat, db, pair):
        a, _, match = pair
        await chat.send(match.id, a.id, "x" * 2000, db)
        with pytest.raises(InvalidArgumentError):
            await chat.send(match.id, a.id, "x" * 2001, db)

    async def test_outsider_forbidden(self, chat, db, pair, make_user):
        _, _, match = pair
        outsider = await make_user("C")
        with pytest.raises(ForbiddenError):
            await chat.send(match.id, outsider.id, "hi", db)

    async def test_inactive_match_forbidden(self, chat, db, pair):
        a, b, match = pair
        await MatchService().unmatch(match.id, b.id, db)
        with pytest.raises(ForbiddenError):
            await chat.send(match.id, a.id, "still there?", db)

    async def test_sent_at_strictly_increasing_with_frozen_clock(self, chat, db, pair):
        a, b, match = pair
        frozen = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        with patch("app.services.chat_service.utcnow", return_value=frozen):
            first, _ = await chat.send(match.id, a.id, "one", db)
            second, _ = await chat.send(match.id, b.id, "two", db)
            third, _ = await chat.send(match.id, a.id, "three", db)

        stamps = [as_utc(m.sent_at) for m in (first, second, third)]
        assert stamps[0] < stamps[1] < stamps[2]

    def test_preview_is_first_fifty_characters(self, chat):
        text = "a" * 80
        assert chat.preview(text) == "a" * 50
        assert chat.preview("short") == "short"


class TestListMessages:
    async def test_oldest_first_with_paging(self, chat, db, pair):
        a, b, match = pair
        for i in range(5):
            await chat.send(match.id, a.id if i % 2 == 0 else b.id, f"m{i}", db)

        page = await chat.list_messages(match.id, a.id, db, limit=2, mark_as_read=False)
        assert [m.content for m in page.messages] == ["m3", "m4"]
        assert page.total == 5

        older = await chat.list_messages(
            match.id, a.id, db, limit=2, offset=2, mark_as_read=False
        )
        assert [m.content for m in older.messages] == ["m1", "m2"]

    async def test_equal_timestamps_page_without_overlap(self, chat, db, pair):
        a, b, match = pair
        tied = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        rows = [
            Message(
                match_id=match.id,
                sender_id=a.id if i % 2 else b.id,
                content=f"t{i}",
                sent_at=tied,
            )
            for i in range(4)
        ]
        db.add_all(rows)
        await db.flush()

        seen = []
        for offset in range(0, 4, 2):
            page = await chat.list_messages(
                match.id, a.id, db, limit=2, offset=offset, mark_as_read=False
            )
            seen = [m.id for m in page.messages] + seen

        assert seen == sorted(m.id for m in rows)
        assert (await chat.last_message(match.id, db)).id == max(m.id for m in rows)

    async def test_unread_count_taken_before_marking(self, chat, db, pair):
        a, b, match = pair
        await chat.send(match.id, b.id, "hi", db)
        await chat.send(match.id, b.id, "hello?", db)
        await chat.send(match.id, a.id, "hey", db)

        page = await chat.list_messages(match.id, a.id, db)
        assert page.unread_count == 2
        assert await chat.unread_for_match(match.id, a.id, db) == 0
        # a's own message is still unread for b
        assert await chat.unread_for_match(match.id, b.id, db) == 1

    async def test_listing_without_marking(self, chat, db, pair):
        a, b, match = pair
        await chat.send(match.id, b.id, "hi", db)
        page = await chat.list_messages(match.id, a.id, db, mark_as_read=False)
        assert page.unread_count == 1
        assert await chat.unread_for_match(match.id, a.id, db) == 1

    async def test_history_stays_readable_after_unmatch(self, chat, db, pair):
        a, b, match = pair
        await chat.send(match.id, a.id, "bye", db)
        await MatchService().unmatch(match.id, a.id, db)
        page = await chat.list_messages(match.id, b.id, db)
        assert [m.content for m in page.messages] == ["bye"]

    async def test_outsider_forbidden(self, chat, db, pair, make_user):
        _, _, match = pair
        outsider = await make_user("C")
        with pytest.raises(ForbiddenError):
            await chat.list_messages(match.id, outsider.id, db)

    async def test_bad_paging_rejected(self, chat, db, pair):
        a, _, match = pair
        with pytest.raises(InvalidArgumentError):
            await chat.list_messages(match.id, a.id, db, limit=0)
        with pytest.raises(InvalidArgumentError):
            await chat.list_messages(match.id, a.id, db, offset=-1)


class TestReadState:
    async def test_mark_as_read_flips_only_counterpart(self, chat, db, pair):
        a, b, match = pair
        await chat.send(match.id, b.id, "1", db)
        await chat.send(match.id, b.id, "2", db)
        await chat.send(match.id, a.id, "3", db)

        assert await chat.mark_as_read(match.id, a.id, db) == 2
        assert await chat.mark_as_read(match.id, a.id, db) == 0
        assert await chat.unread_for_match(match.id, b.id, db) == 1

    async def test_mark_as_read_unknown_match(self, chat, db, make_user):
        a = await make_user("A")
        with pytest.raises(NotFoundError):
            await chat.mark_as_read(uuid.uuid4(), a.id, db)

    async def test_unread_total_spans_active_matches(self, chat, db, make_user, make_match):
        me = await make_user("Me")
        x, y = await make_user("X"), await make_user("Y")
        with_x = await make_match(me, x)
        with_y = await make_match(me, y)
        await chat.send(with_x.id, x.id, "hi", db)
        await chat.send(with_y.id, y.id, "hey", db)
        await chat.send(with_y.id, y.id, "hello", db)

        assert await chat.unread_total(me.id, db) == 3
        await MatchService().unmatch(with_y.id, me.id, db)
        assert await chat.unread_total(me.id, db) == 1

    async def test_last_message(self, chat, db, pair):
        a, b, match = pair
        assert await chat.last_message(match.id, db) is None
        await chat.send(match.id, a.id, "first", db)
        await chat.send(match.id, b.id, "second", db)
        assert (await chat.last_message(match.id, db)).content == "second"
