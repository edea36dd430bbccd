"""
Redis adapter for the SSE Relay.

Uses Redis Pub/Sub through ``redis.asyncio``. All subscriptions share one
client and its connection pool; each subscription holds its own Pub/Sub
connection and a reader task that forwards messages to the handler.

Payloads arrive as raw bytes and are decoded as UTF-8 in the reader. A
payload that does not decode is logged and skipped; it never ends the
subscription.
"""
import asyncio
import logging
from typing import Dict, List, Tuple
from uuid import uuid4

import redis.asyncio as redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from .base import BusAdapter, LostCallback, MessageHandler, PublishError, SubscriptionError, redact_url

logger = logging.getLogger(__name__)


class RedisAdapter(BusAdapter):
    """
    Redis Pub/Sub adapter.

    Features:
    - Shared client for publish and all subscriptions
    - Subscribe handshake confirmed before ``subscribe`` returns
    - UTF-8 payloads forwarded verbatim; undecodable payloads skipped
    - ``on_lost`` fires whenever a reader stops on its own
    """

    def __init__(self, url: str = "redis://localhost:6379/0", subscribe_timeout: float = 5.0):
        """
        Initialize the Redis adapter.

        Args:
            url: Redis URL, optionally with credentials (redis://:pass@host:6379/0)
            subscribe_timeout: Seconds to wait for a subscribe confirmation
        """
        self._url = url
        self._subscribe_timeout = subscribe_timeout
        self._client: redis.Redis | None = None
        # Set when a reader loses its connection; cleared by the next confirmed subscribe
        self._link_lost = False
        # subscription_id -> (pubsub, reader task)
        self._subscriptions: Dict[str, Tuple[PubSub, asyncio.Task]] = {}

    async def connect(self) -> None:
        """Connect to Redis and verify the server answers PING."""
        if self._client is not None:
            logger.warning("Already connected to Redis")
            return

        logger.info(f"Connecting to Redis at {redact_url(self._url)}")

        try:
            client = redis.from_url(self._url)
        except ValueError as e:
            raise ConnectionError(f"Invalid Redis URL {redact_url(self._url)}: {e}") from e

        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            logger.error(f"Failed to connect to Redis: {e}")
            raise ConnectionError(f"Failed to connect to Redis at {redact_url(self._url)}: {e}") from e

        self._client = client
        self._link_lost = False
        logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        """Cancel every subscription and close the client."""
        if self._client is None:
            return

        logger.info("Disconnecting from Redis")

        for sub_id in list(self._subscriptions.keys()):
            await self.unsubscribe(sub_id)

        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis client: {e}")

        self._client = None
        logger.info("Disconnected from Redis")

    async def publish(self, channel: str, payload: str) -> None:
        if self._client is None:
            raise ConnectionError("Not connected to Redis")

        try:
            await self._client.publish(channel, payload)
            logger.debug(f"Published message to {channel}")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to publish to {channel}: {e}")
            raise PublishError(f"Failed to publish to {channel}: {e}") from e

    async def subscribe(
        self,
        channels: List[str],
        handler: MessageHandler,
        subscription_id: str | None = None,
        on_lost: LostCallback | None = None,
    ) -> str:
        """
        Subscribe to Redis channels and start forwarding messages.

        Returns once Redis has confirmed every channel.
        """
        if self._client is None:
            raise ConnectionError("Not connected to Redis")

        sub_id = subscription_id or str(uuid4())
        pubsub = self._client.pubsub()

        try:
            await pubsub.subscribe(*channels)
            await self._wait_for_confirmation(pubsub, len(channels))
        except (RedisError, OSError, SubscriptionError) as e:
            logger.error(f"Failed to subscribe to {channels}: {e}")
            await self._close_pubsub(pubsub)
            if isinstance(e, SubscriptionError):
                raise
            raise SubscriptionError(f"Failed to subscribe to {channels}: {e}") from e

        self._link_lost = False
        task = asyncio.create_task(self._reader(sub_id, pubsub, handler, on_lost))
        self._subscriptions[sub_id] = (pubsub, task)
        logger.info(f"Subscribed to {channels} (sub_id: {sub_id})")
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        entry = self._subscriptions.pop(subscription_id, None)
        if entry is None:
            logger.debug(f"Subscription {subscription_id} not found")
            return

        pubsub, task = entry
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Reader for {subscription_id} failed: {e}")
        finally:
            await self._close_pubsub(pubsub)
        logger.info(f"Unsubscribed: {subscription_id}")

    @property
    def is_connected(self) -> bool:
        return self._client is not None and not self._link_lost

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def _wait_for_confirmation(self, pubsub: PubSub, expected: int) -> None:
        """Consume the subscribe replies for every requested channel."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._subscribe_timeout
        confirmed = 0
        while confirmed < expected:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SubscriptionError("Timed out waiting for subscribe confirmation")
            message = await pubsub.get_message(timeout=remaining)
            if message is not None and message["type"] in ("subscribe", b"subscribe"):
                confirmed += 1

    async def _reader(
        self,
        sub_id: str,
        pubsub: PubSub,
        handler: MessageHandler,
        on_lost: LostCallback | None,
    ) -> None:
        """Forward messages to the handler one at a time, in arrival order."""
        try:
            async for message in pubsub.listen():
                if message["type"] not in ("message", b"message"):
                    continue
                channel = _text(message["channel"])
                try:
                    payload = _text(message["data"])
                except UnicodeDecodeError as e:
                    logger.error(f"Dropping undecodable message from {channel}: {e}")
                    continue
                try:
                    await handler(channel, payload)
                except Exception as e:
                    logger.error(f"Error in message handler for {channel}: {e}")
        except (RedisError, OSError) as e:
            self._link_lost = True
            logger.error(f"Subscription {sub_id} lost: {e}")
        except Exception as e:
            logger.error(f"Subscription {sub_id} reader failed: {e}", exc_info=True)
        else:
            logger.warning(f"Subscription {sub_id} ended")

        if self._subscriptions.pop(sub_id, None) is not None:
            await self._close_pubsub(pubsub)
        if on_lost is not None:
            on_lost()

    async def _close_pubsub(self, pubsub: PubSub) -> None:
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis pubsub: {e}")


def _text(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value
