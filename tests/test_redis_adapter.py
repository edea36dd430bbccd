"""
Tests for the Redis adapter, run against an in-process fakeredis server.
"""
import asyncio

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from redis.exceptions import ConnectionError as RedisConnectionError

from sse_relay.adapters import RedisAdapter
from sse_relay.adapters.base import SubscriptionError

REDIS_URL = "redis://localhost:6379/0"


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def server(monkeypatch):
    """Route every client the adapter creates to one fake Redis server."""
    server = FakeServer()
    monkeypatch.setattr(
        "sse_relay.adapters.redis_adapter.redis.from_url",
        lambda url, **kwargs: FakeAsyncRedis(server=server, **kwargs),
    )
    return server


@pytest.fixture
async def redis_adapter(server):
    adapter = RedisAdapter(REDIS_URL)
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def publisher(server):
    """Independent client for publishing raw bytes."""
    client = FakeAsyncRedis(server=server)
    yield client
    await client.aclose()


class Recorder:
    """Collects handler calls and lost notifications."""

    def __init__(self):
        self.received = []
        self.lost = 0

    async def handler(self, channel: str, payload: str) -> None:
        self.received.append((channel, payload))

    def on_lost(self) -> None:
        self.lost += 1


class TestConnection:

    async def test_connect_and_disconnect(self, server):
        adapter = RedisAdapter(REDIS_URL)
        assert not adapter.is_connected

        await adapter.connect()
        assert adapter.is_connected

        await adapter.disconnect()
        assert not adapter.is_connected

    async def test_unreachable_server(self, server):
        server.connected = False
        adapter = RedisAdapter(REDIS_URL)

        with pytest.raises(ConnectionError):
            await adapter.connect()
        assert not adapter.is_connected

    async def test_requires_connection(self, server):
        adapter = RedisAdapter(REDIS_URL)
        recorder = Recorder()

        with pytest.raises(ConnectionError):
            await adapter.publish("events:user:42", "test")
        with pytest.raises(ConnectionError):
            await adapter.subscribe(["events:user:42"], recorder.handler)


class TestSubscribe:

    async def test_subscription_live_when_subscribe_returns(self, redis_adapter, publisher):
        recorder = Recorder()
        await redis_adapter.subscribe(["events:user:42"], recorder.handler)

        # The handshake is complete, so the server already counts the subscriber
        assert await publisher.publish("events:user:42", "hello") == 1

        await wait_until(lambda: recorder.received)
        assert recorder.received == [("events:user:42", "hello")]

    async def test_confirmation_timeout(self, server):
        adapter = RedisAdapter(REDIS_URL, subscribe_timeout=0)
        await adapter.connect()
        recorder = Recorder()

        with pytest.raises(SubscriptionError):
            await adapter.subscribe(["events:user:42"], recorder.handler)
        assert adapter.subscription_count == 0

        await adapter.disconnect()

    async def test_custom_subscription_id(self, redis_adapter):
        recorder = Recorder()
        sub_id = await redis_adapter.subscribe(
            ["events:user:42"], recorder.handler, subscription_id="conn-1"
        )

        assert sub_id == "conn-1"
        assert redis_adapter.subscription_count == 1

    async def test_messages_forwarded_in_order(self, redis_adapter):
        recorder = Recorder()
        await redis_adapter.subscribe(["events:user:42"], recorder.handler)

        for payload in ("m1", "m2", "m3"):
            await redis_adapter.publish("events:user:42", payload)

        await wait_until(lambda: len(recorder.received) == 3)
        assert [payload for _, payload in recorder.received] == ["m1", "m2", "m3"]

    async def test_payload_forwarded_verbatim(self, redis_adapter):
        recorder = Recorder()
        await redis_adapter.subscribe(["events:user:42"], recorder.handler)

        await redis_adapter.publish("events:user:42", '{"event":"ping","note":"héllo"}')

        await wait_until(lambda: recorder.received)
        assert recorder.received == [("events:user:42", '{"event":"ping","note":"héllo"}')]

    async def test_undecodable_payload_skipped(self, redis_adapter, publisher):
        recorder = Recorder()
        await redis_adapter.subscribe(
            ["events:user:42"], recorder.handler, on_lost=recorder.on_lost
        )

        await publisher.publish("events:user:42", b"\xff\xfe")
        await publisher.publish("events:user:42", b"ok")

        await wait_until(lambda: recorder.received)
        assert recorder.received == [("events:user:42", "ok")]
        assert recorder.lost == 0
        assert redis_adapter.subscription_count == 1
        assert redis_adapter.is_connected

    async def test_handler_error_does_not_stop_reader(self, redis_adapter):
        received = []

        async def flaky_handler(channel: str, payload: str) -> None:
            if payload == "bad":
                raise ValueError("handler failed")
            received.append(payload)

        await redis_adapter.subscribe(["events:user:42"], flaky_handler)

        await redis_adapter.publish("events:user:42", "bad")
        await redis_adapter.publish("events:user:42", "good")

        await wait_until(lambda: received)
        assert received == ["good"]


class TestUnsubscribe:

    async def test_unsubscribe_stops_delivery_and_closes_pubsub(self, redis_adapter, publisher):
        recorder = Recorder()
        sub_id = await redis_adapter.subscribe(["events:user:42"], recorder.handler)
        pubsub, task = redis_adapter._subscriptions[sub_id]

        await redis_adapter.unsubscribe(sub_id)

        assert redis_adapter.subscription_count == 0
        assert task.done()
        assert pubsub.connection is None

        await publisher.publish("events:user:42", "late")
        await asyncio.sleep(0.05)
        assert recorder.received == []

    async def test_unsubscribe_unknown_id(self, redis_adapter):
        await redis_adapter.unsubscribe("missing")
        assert redis_adapter.subscription_count == 0

    async def test_disconnect_cancels_all_subscriptions(self, server):
        adapter = RedisAdapter(REDIS_URL)
        await adapter.connect()
        recorder = Recorder()
        for i in range(3):
            await adapter.subscribe([f"events:user:{i}"], recorder.handler)

        await adapter.disconnect()

        assert adapter.subscription_count == 0
        assert recorder.lost == 0


class TestConnectionLoss:

    async def test_lost_connection_notifies_and_cleans_up(self, redis_adapter):
        recorder = Recorder()
        sub_id = await redis_adapter.subscribe(
            ["events:user:42"], recorder.handler, on_lost=recorder.on_lost
        )
        pubsub, _ = redis_adapter._subscriptions[sub_id]

        async def connection_dropped(*args, **kwargs):
            raise RedisConnectionError("Connection closed by server.")

        # The reader picks this up after the message it is currently waiting for
        pubsub.parse_response = connection_dropped
        await redis_adapter.publish("events:user:42", "last")

        await wait_until(lambda: recorder.lost == 1)
        assert recorder.received == [("events:user:42", "last")]
        assert redis_adapter.subscription_count == 0
        assert not redis_adapter.is_connected

    async def test_new_subscription_restores_connected_state(self, redis_adapter):
        recorder = Recorder()
        sub_id = await redis_adapter.subscribe(
            ["events:broadcast"], recorder.handler, on_lost=recorder.on_lost
        )
        pubsub, _ = redis_adapter._subscriptions[sub_id]

        async def connection_dropped(*args, **kwargs):
            raise RedisConnectionError("Connection closed by server.")

        pubsub.parse_response = connection_dropped
        await redis_adapter.publish("events:broadcast", "last")
        await wait_until(lambda: recorder.lost == 1)
        assert not redis_adapter.is_connected

        await redis_adapter.subscribe(["events:broadcast"], recorder.handler)
        assert redis_adapter.is_connected
