"""Tests for the Redis pub/sub realtime channel."""
import asyncio
import json

import pytest
import redis

from services.chat_service import LIVE_UPDATES_LOST, ChatState, OrderChat
from services.realtime_service import RealtimeChannel

CHANNEL = "realtime:messages:order_id=eq.o1"


class StubPubSub:
    """Pub/sub double fed through a queue; queued exceptions are raised by ``listen``."""

    def __init__(self):
        self.queue: "asyncio.Queue" = asyncio.Queue()
        self.subscribed = []
        self.unsubscribed = []
        self.closed = False
        self.unsubscribe_error = None

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error
        self.unsubscribed.append(channel)

    async def aclose(self):
        self.closed = True

    async def listen(self):
        while True:
            item = await self.queue.get()
            try:
                if isinstance(item, Exception):
                    raise item
                yield item
            finally:
                self.queue.task_done()

    def push(self, data, kind="message"):
        self.queue.put_nowait({"type": kind, "channel": CHANNEL, "data": data})


class StubRedis:
    def __init__(self):
        self.pubsubs = []
        self.published = []

    def pubsub(self):
        pubsub = StubPubSub()
        self.pubsubs.append(pubsub)
        return pubsub

    async def publish(self, channel, payload):
        self.published.append((channel, payload))
        return 1


def insert_event(record, kind="INSERT"):
    return json.dumps({"type": kind, "table": "messages", "record": record})


def chat_row(message_id, order_id="o1"):
    return {
        "id": message_id,
        "order_id": order_id,
        "sender_id": "admin",
        "content": f"hello {message_id}",
        "created_at": "2024-01-01T00:00:00+00:00"
    }


@pytest.fixture
def redis_client():
    return StubRedis()


@pytest.fixture
def channel(redis_client):
    return RealtimeChannel(redis_client)


async def wait_for_listener(task):
    await asyncio.wait({task})
    # let done-callbacks run
    await asyncio.sleep(0)


def test_channel_name_is_scoped_by_filter():
    assert RealtimeChannel.channel_name("messages", "order_id", "o1") == CHANNEL


async def test_publish_insert_targets_the_rows_scope(channel, redis_client):
    receivers = await channel.publish_insert("messages", "order_id", chat_row("m1"))

    assert receivers == 1
    name, payload = redis_client.published[0]
    assert name == CHANNEL
    assert json.loads(payload) == {"type": "INSERT", "table": "messages", "record": chat_row("m1")}


async def test_only_insert_records_are_delivered(channel, redis_client):
    received = []
    subscription = await channel.subscribe_inserts("messages", "order_id", "o1", received.append)
    pubsub = redis_client.pubsubs[0]

    pubsub.push(1, kind="subscribe")
    pubsub.push("not json")
    pubsub.push(json.dumps({"type": "INSERT"}))
    pubsub.push(insert_event(chat_row("m0"), kind="UPDATE"))
    pubsub.push(insert_event(chat_row("m1")))
    await pubsub.queue.join()

    assert pubsub.subscribed == [CHANNEL]
    assert received == [chat_row("m1")]
    await subscription.unsubscribe()


async def test_failing_callback_keeps_listening(channel, redis_client):
    received = []

    def callback(record):
        if record["id"] == "bad":
            raise RuntimeError("view crashed")
        received.append(record["id"])

    subscription = await channel.subscribe_inserts("messages", "order_id", "o1", callback)
    pubsub = redis_client.pubsubs[0]
    pubsub.push(insert_event(chat_row("bad")))
    pubsub.push(insert_event(chat_row("m2")))
    await pubsub.queue.join()

    assert received == ["m2"]
    assert not subscription.task.done()
    await subscription.unsubscribe()


async def test_unsubscribe_stops_listener_and_releases_connection(channel, redis_client):
    subscription = await channel.subscribe_inserts("messages", "order_id", "o1", lambda record: None)
    pubsub = redis_client.pubsubs[0]

    await subscription.unsubscribe()
    await subscription.unsubscribe()

    assert subscription.task.cancelled()
    assert pubsub.unsubscribed == [CHANNEL]
    assert pubsub.closed


async def test_dead_listener_is_reported_and_torn_down(channel, redis_client):
    lost = []
    subscription = await channel.subscribe_inserts(
        "messages", "order_id", "o1", lambda record: None, on_lost=lost.append
    )
    pubsub = redis_client.pubsubs[0]

    pubsub.queue.put_nowait(redis.ConnectionError("Connection reset by peer"))
    await wait_for_listener(subscription.task)
    await subscription.unsubscribe()

    assert len(lost) == 1
    assert isinstance(lost[0], redis.ConnectionError)
    assert pubsub.unsubscribed == [CHANNEL]
    assert pubsub.closed


async def test_connection_closed_when_unsubscribe_fails(channel, redis_client):
    subscription = await channel.subscribe_inserts("messages", "order_id", "o1", lambda record: None)
    pubsub = redis_client.pubsubs[0]
    pubsub.unsubscribe_error = redis.ConnectionError("Connection closed by server")

    await subscription.unsubscribe()

    assert pubsub.closed


async def test_chat_over_dropped_connection(gateway, channel, redis_client):
    events = []
    chat = OrderChat(gateway, channel, "o1", "u1", on_change=events.append)
    await chat.open()
    pubsub = redis_client.pubsubs[0]

    pubsub.push(insert_event(chat_row("m1")))
    await pubsub.queue.join()
    pubsub.queue.put_nowait(redis.ConnectionError("Connection reset by peer"))
    await wait_for_listener(chat._subscription.task)

    assert [entry.message.id for entry in chat.entries] == ["m1"]
    assert chat.state == ChatState.ERROR
    assert chat.error == LIVE_UPDATES_LOST

    await chat.close()
    assert pubsub.closed
