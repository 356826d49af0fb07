"""
Spark — Redis pub/sub relay.

Lets several API processes share one logical broadcaster.  Every ``emit``
is published to a single Redis channel; every process subscribes to that
channel and hands incoming envelopes to its local broadcaster.

Publishing goes through a bounded queue drained by one task, so emitters
never await Redis.  If Redis is unavailable the envelope is dropped and
logged: realtime delivery is best-effort.  The listener survives bad
envelopes and lost connections; it logs, backs off and resubscribes.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger("spark.realtime.relay")

DeliverFn = Callable[[dict[str, Any]], Any]


class RedisRelay:
    def __init__(
        self,
        redis,
        channel: str,
        queue_size: int = 1024,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ) -> None:
        self.redis = redis
        self.channel = channel
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []
        self._pubsub = None

    def publish(self, envelope: dict[str, Any]) -> None:
        try:
            self._outbox.put_nowait(envelope)
        except asyncio.QueueFull:
            logger.warning("relay_outbox_full", room=envelope.get("room"))

    async def start(self, deliver: DeliverFn) -> None:
        await self._subscribe()
        self._tasks = [
            asyncio.create_task(self._publish_loop(), name="relay-publisher"),
            asyncio.create_task(self._listen_loop(deliver), name="relay-listener"),
        ]
        logger.info("relay_started", channel=self.channel)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self._drop_pubsub(unsubscribe=True)
        logger.info("relay_stopped", channel=self.channel)

    # ── Private helpers ──────────────────────────────────────────────────

    async def _subscribe(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)

    async def _drop_pubsub(self, unsubscribe: bool = False) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            if unsubscribe:
                await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except RedisError as exc:
            logger.debug("relay_pubsub_close_failed", channel=self.channel, error=str(exc))

    async def _publish_loop(self) -> None:
        while True:
            envelope = await self._outbox.get()
            try:
                await self.redis.publish(self.channel, json.dumps(envelope))
            except RedisError as exc:
                logger.warning(
                    "relay_publish_failed", room=envelope.get("room"), error=str(exc)
                )
            finally:
                self._outbox.task_done()

    async def _listen_loop(self, deliver: DeliverFn) -> None:
        delay = self.retry_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    logger.info("relay_resubscribed", channel=self.channel)
                async for message in self._pubsub.listen():
                    delay = self.retry_delay
                    self._dispatch(message, deliver)
                logger.warning("relay_listen_ended", channel=self.channel)
            except RedisError as exc:
                logger.warning(
                    "relay_listen_failed",
                    channel=self.channel,
                    error=str(exc),
                    retry_in=delay,
                )
            await self._drop_pubsub()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    def _dispatch(self, message: dict[str, Any], deliver: DeliverFn) -> None:
        if message.get("type") != "message":
            return
        try:
            envelope = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("relay_bad_envelope", channel=self.channel)
            return
        if not isinstance(envelope, dict) or "room" not in envelope or "frame" not in envelope:
            logger.warning("relay_bad_envelope", channel=self.channel)
            return
        try:
            deliver(envelope)
        except Exception:
            logger.exception(
                "relay_deliver_failed", channel=self.channel, room=envelope.get("room")
            )
