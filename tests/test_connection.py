"""
Tests for the bounded per-connection queue.
"""
import asyncio

import pytest

from sse_relay.services.connection import BoundedQueue, Connection, QueueClosed


class TestBoundedQueue:

    async def test_fifo_order(self):
        queue = BoundedQueue(5)
        for item in ("m1", "m2", "m3"):
            assert queue.try_put(item)

        assert [await queue.get() for _ in range(3)] == ["m1", "m2", "m3"]

    async def test_try_put_refuses_when_full(self):
        queue = BoundedQueue(2)
        assert queue.try_put("a")
        assert queue.try_put("b")
        assert queue.full()

        assert not queue.try_put("c")
        assert queue.qsize() == 2

    async def test_never_exceeds_bound(self):
        queue = BoundedQueue(10)
        accepted = sum(queue.try_put(i) for i in range(1000))

        assert accepted == 10
        assert queue.qsize() == 10
        assert [await queue.get() for _ in range(10)] == list(range(10))

    async def test_get_waits_for_item(self):
        queue = BoundedQueue(1)
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not getter.done()

        queue.try_put("late")
        assert await asyncio.wait_for(getter, timeout=1) == "late"

    async def test_close_wakes_waiting_consumer(self):
        queue = BoundedQueue(1)
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.close()
        with pytest.raises(QueueClosed):
            await asyncio.wait_for(getter, timeout=1)

    async def test_close_discards_pending_items(self):
        queue = BoundedQueue(3)
        queue.try_put("a")
        queue.close()

        assert queue.closed
        assert queue.qsize() == 0
        assert not queue.try_put("b")
        with pytest.raises(QueueClosed):
            await queue.get()

    async def test_close_is_idempotent(self):
        queue = BoundedQueue(1)
        queue.close()
        queue.close()
        assert queue.closed

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedQueue(0)


def test_connection_close_closes_queue():
    connection = Connection(identity=42, queue=BoundedQueue(10))

    assert not connection.closed
    connection.close()
    assert connection.closed
    assert connection.queue.closed


def test_connection_ids_are_unique():
    ids = {Connection(identity=1, queue=BoundedQueue(1)).id for _ in range(50)}
    assert len(ids) == 50
