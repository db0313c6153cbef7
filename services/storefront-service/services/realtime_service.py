"""Realtime change feed over Redis pub/sub."""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import REALTIME_CHANNEL_PREFIX

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Dict[str, Any]], None]
LostCallback = Callable[[BaseException], None]


class Subscription:
    """Handle for one channel subscription; tear it down with ``unsubscribe``."""

    def __init__(self, pubsub: Any, channel: str, task: "asyncio.Task[None]"):
        self.pubsub = pubsub
        self.channel = channel
        self.task = task
        self.active = True

    async def unsubscribe(self) -> None:
        """Stop the listener and release the pub/sub connection, even if the listener already died."""
        if not self.active:
            return
        self.active = False
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Realtime listener had already stopped", extra={
                "channel": self.channel,
                "error": str(e)
            })
        finally:
            await self._release()
        logger.debug("Realtime subscription closed", extra={"channel": self.channel})

    async def _release(self) -> None:
        try:
            await self.pubsub.unsubscribe(self.channel)
        except RedisError as e:
            logger.warning("Realtime unsubscribe failed", extra={"channel": self.channel, "error": str(e)})
        finally:
            try:
                await self.pubsub.aclose()
            except RedisError as e:
                logger.warning("Realtime connection close failed", extra={"channel": self.channel, "error": str(e)})


class RealtimeChannel:
    """
    Publishes and delivers row-insert events.

    Channels are scoped by an equality filter, e.g.
    ``realtime:messages:order_id=eq.42``; each event carries the full row.
    """

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize realtime channel.

        Args:
            redis_client: Async Redis client
        """
        self.redis_client = redis_client

    @staticmethod
    def channel_name(table: str, column: str, value: Any) -> str:
        return f"{REALTIME_CHANNEL_PREFIX}:{table}:{column}=eq.{value}"

    async def subscribe_inserts(
        self,
        table: str,
        column: str,
        value: Any,
        callback: InsertCallback,
        on_lost: Optional[LostCallback] = None
    ) -> Subscription:
        """
        Deliver every row inserted into ``table`` where ``column == value``.

        Args:
            table: Collection name
            column: Filter column
            value: Filter value
            callback: Called with the inserted row
            on_lost: Called with the error if the listener dies (e.g. Redis drops)

        Returns:
            Active subscription
        """
        channel = self.channel_name(table, column, value)
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(channel)
        task = asyncio.create_task(self._listen(pubsub, channel, callback))
        task.add_done_callback(lambda done: self._listener_done(done, channel, on_lost))
        logger.debug("Realtime subscription opened", extra={"channel": channel})
        return Subscription(pubsub, channel, task)

    @staticmethod
    def _listener_done(task: "asyncio.Task[None]", channel: str, on_lost: Optional[LostCallback]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.error("Realtime listener stopped", extra={"channel": channel, "error": str(error)})
        if on_lost is not None:
            on_lost(error)

    async def _listen(self, pubsub: Any, channel: str, callback: InsertCallback) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            event = self._decode(message.get("data"), channel)
            if event is None or event.get("type") != "INSERT":
                continue
            try:
                callback(event["record"])
            except Exception:
                logger.exception("Realtime callback failed", extra={"channel": channel})

    @staticmethod
    def _decode(data: Any, channel: str) -> Optional[Dict[str, Any]]:
        try:
            event = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable realtime event", extra={"channel": channel})
            return None
        if not isinstance(event, dict) or not isinstance(event.get("record"), dict):
            logger.warning("Dropping realtime event without record", extra={"channel": channel})
            return None
        return event

    async def publish_insert(self, table: str, column: str, record: Dict[str, Any]) -> int:
        """
        Announce an inserted row to subscribers of its scope.

        Returns:
            Number of subscribers that received the event
        """
        channel = self.channel_name(table, column, record[column])
        payload = json.dumps({"type": "INSERT", "table": table, "record": record}, default=str)
        return await self.redis_client.publish(channel, payload)
