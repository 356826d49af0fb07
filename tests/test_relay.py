"""Tests for RedisRelay with a mocked redis.asyncio client."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.realtime.relay import RedisRelay

CHANNEL = "spark:test"


def _fake_redis(incoming=()):
    """Redis double whose pub/sub yields ``incoming`` and then idles."""

    async def _listen():
        yield {"type": "subscribe", "channel": CHANNEL, "data": 1}
        for item in incoming:
            yield item
        await asyncio.Event().wait()

    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.listen = _listen

    redis = MagicMock()
    redis.publish = AsyncMock(return_value=1)
    redis.pubsub = MagicMock(return_value=pubsub)
    return redis, pubsub


async def _wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestRedisRelay:
    async def test_publishes_envelopes_as_json(self):
        redis, _ = _fake_redis()
        relay = RedisRelay(redis, CHANNEL)
        await relay.start(lambda envelope: None)

        envelope = {"room": "user:1", "frame": {"event": "newMatch", "data": {}}, "exclude_user": None}
        relay.publish(envelope)
        await relay._outbox.join()

        redis.publish.assert_awaited_once_with(CHANNEL, json.dumps(envelope))
        await relay.stop()

    async def test_delivers_incoming_messages(self):
        envelope = {"room": "match:1", "frame": {"event": "newMessage", "data": {}}, "exclude_user": None}
        redis, pubsub = _fake_redis([
            {"type": "message", "channel": CHANNEL, "data": "not json"},
            {"type": "message", "channel": CHANNEL, "data": json.dumps(envelope)},
        ])
        received = []
        relay = RedisRelay(redis, CHANNEL)
        await relay.start(received.append)

        await _wait_for(lambda: received)
        assert received == [envelope]
        pubsub.subscribe.assert_awaited_once_with(CHANNEL)

        await relay.stop()
        pubsub.unsubscribe.assert_awaited_once_with(CHANNEL)
        pubsub.aclose.assert_awaited_once()

    async def test_publish_failure_is_logged_not_raised(self):
        redis, _ = _fake_redis()
        redis.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        relay = RedisRelay(redis, CHANNEL)
        await relay.start(lambda envelope: None)

        relay.publish({"room": "user:1", "frame": {}, "exclude_user": None})
        relay.publish({"room": "user:2", "frame": {}, "exclude_user": None})
        await relay._outbox.join()

        assert redis.publish.await_count == 2
        await relay.stop()

    def test_full_outbox_drops(self):
        relay = RedisRelay(MagicMock(), CHANNEL, queue_size=1)
        relay.publish({"room": "a"})
        relay.publish({"room": "b"})
        assert relay._outbox.qsize() == 1


def _pubsub(incoming=(), fail_with=None):
    """Pub/sub double that yields ``incoming`` then either raises or idles."""

    async def _listen():
        yield {"type": "subscribe", "channel": CHANNEL, "data": 1}
        for item in incoming:
            yield item
        if fail_with is not None:
            raise fail_with
        await asyncio.Event().wait()

    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.listen = _listen
    return pubsub


def _message(payload):
    return {"type": "message", "channel": CHANNEL, "data": json.dumps(payload)}


ENVELOPE = {"room": "match:1", "frame": {"event": "newMessage", "data": {}}, "exclude_user": None}


class TestListenerResilience:
    async def test_foreign_payloads_are_skipped(self):
        pubsub = _pubsub([_message([1, 2]), _message({"hello": "world"}), _message(ENVELOPE)])
        redis = MagicMock()
        redis.pubsub = MagicMock(return_value=pubsub)
        received = []
        relay = RedisRelay(redis, CHANNEL)
        await relay.start(received.append)

        await _wait_for(lambda: received)
        assert received == [ENVELOPE]
        assert not relay._tasks[1].done()
        await relay.stop()

    async def test_failing_delivery_does_not_stop_listener(self):
        second = dict(ENVELOPE, room="match:2")
        pubsub = _pubsub([_message(ENVELOPE), _message(second)])
        redis = MagicMock()
        redis.pubsub = MagicMock(return_value=pubsub)
        received = []

        def _deliver(envelope):
            if envelope["room"] == "match:1":
                raise RuntimeError("boom")
            received.append(envelope)

        relay = RedisRelay(redis, CHANNEL)
        await relay.start(_deliver)

        await _wait_for(lambda: received)
        assert received == [second]
        assert not relay._tasks[1].done()
        await relay.stop()

    async def test_resubscribes_after_connection_loss(self):
        broken = _pubsub(fail_with=RedisConnectionError("connection reset"))
        healthy = _pubsub([_message(ENVELOPE)])
        redis = MagicMock()
        redis.pubsub = MagicMock(side_effect=[broken, healthy])
        received = []
        relay = RedisRelay(redis, CHANNEL, retry_delay=0.01)
        await relay.start(received.append)

        await _wait_for(lambda: received)
        assert received == [ENVELOPE]
        broken.aclose.assert_awaited_once()
        healthy.subscribe.assert_awaited_once_with(CHANNEL)

        await relay.stop()
        healthy.unsubscribe.assert_awaited_once_with(CHANNEL)
