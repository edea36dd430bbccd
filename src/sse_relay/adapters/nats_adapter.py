"""
NATS adapter for the SSE Relay.

Channels map one-to-one onto NATS Core subjects. The nats client runs each
subscription's callback sequentially, which preserves per-channel order.
"""
import logging
from typing import Dict, List
from uuid import uuid4

import nats
from nats.aio.client import Client as NatsClient
from nats.aio.msg import Msg
from nats.aio.subscription import Subscription
from nats.errors import Error as NatsError

from .base import BusAdapter, LostCallback, MessageHandler, PublishError, SubscriptionError, redact_url

logger = logging.getLogger(__name__)


class NatsAdapter(BusAdapter):
    """
    NATS adapter for the SSE Relay.

    Features:
    - Automatic reconnection handled by the nats client
    - Payloads decoded as UTF-8 and forwarded untouched
    """

    def __init__(
        self,
        url: str = "nats://localhost:4222",
        reconnect_time_wait: int = 2,
        max_reconnect_attempts: int = -1,
    ):
        """
        Initialize the NATS adapter.

        Args:
            url: NATS server URL
            reconnect_time_wait: Time to wait between reconnection attempts (seconds)
            max_reconnect_attempts: Max reconnection attempts (-1 for infinite)
        """
        self._url = url
        self._reconnect_time_wait = reconnect_time_wait
        self._max_reconnect_attempts = max_reconnect_attempts
        self._client: NatsClient | None = None
        # subscription_id -> one NATS subscription per channel
        self._subscriptions: Dict[str, List[Subscription]] = {}

    async def connect(self) -> None:
        """Connect to NATS server with auto-reconnection."""
        if self._client is not None and self._client.is_connected:
            logger.warning("Already connected to NATS")
            return

        logger.info(f"Connecting to NATS at {redact_url(self._url)}")

        try:
            self._client = await nats.connect(
                servers=[self._url],
                reconnect_time_wait=self._reconnect_time_wait,
                max_reconnect_attempts=self._max_reconnect_attempts,
                allow_reconnect=True,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
                closed_cb=self._closed_callback,
            )
            logger.info(f"Connected to NATS server: {self._client.connected_url}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise ConnectionError(f"Failed to connect to NATS at {redact_url(self._url)}: {e}") from e

    async def disconnect(self) -> None:
        """Gracefully disconnect from NATS."""
        if self._client is None:
            return

        logger.info("Disconnecting from NATS")

        for sub_id in list(self._subscriptions.keys()):
            await self.unsubscribe(sub_id)

        try:
            await self._client.drain()
        except NatsError as e:
            logger.warning(f"Error draining NATS connection: {e}")

        self._client = None
        logger.info("Disconnected from NATS")

    async def publish(self, channel: str, payload: str) -> None:
        if not self.is_connected:
            raise ConnectionError("Not connected to NATS")

        try:
            await self._client.publish(channel, payload.encode("utf-8"))
            logger.debug(f"Published message to {channel}")
        except NatsError as e:
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
        Subscribe to one or more NATS subjects.

        ``on_lost`` is not used: the nats client restores subscriptions
        itself after a reconnect.
        """
        if not self.is_connected:
            raise ConnectionError("Not connected to NATS")

        sub_id = subscription_id or str(uuid4())

        async def nats_handler(msg: Msg) -> None:
            try:
                await handler(msg.subject, msg.data.decode("utf-8"))
            except UnicodeDecodeError as e:
                logger.error(f"Dropping undecodable message from {msg.subject}: {e}")
            except Exception as e:
                logger.error(f"Error in message handler for {msg.subject}: {e}")

        subs: List[Subscription] = []
        for channel in channels:
            try:
                subs.append(await self._client.subscribe(channel, cb=nats_handler))
            except NatsError as e:
                logger.error(f"Failed to subscribe to {channel}: {e}")
                await self._unsubscribe_all(subs)
                raise SubscriptionError(f"Failed to subscribe to {channel}: {e}") from e

        # Round-trip to the server so the subscriptions are registered
        try:
            await self._client.flush()
        except NatsError as e:
            await self._unsubscribe_all(subs)
            raise SubscriptionError(f"Subscribe handshake failed for {channels}: {e}") from e

        self._subscriptions[sub_id] = subs
        logger.info(f"Subscribed to {channels} (sub_id: {sub_id})")
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        subs = self._subscriptions.pop(subscription_id, None)
        if subs is None:
            logger.debug(f"Subscription {subscription_id} not found")
            return

        await self._unsubscribe_all(subs)
        logger.info(f"Unsubscribed: {subscription_id}")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS."""
        return self._client is not None and self._client.is_connected

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def _unsubscribe_all(self, subs: List[Subscription]) -> None:
        for sub in subs:
            try:
                await sub.unsubscribe()
            except NatsError as e:
                logger.warning(f"Error unsubscribing from {sub.subject}: {e}")

    # NATS callbacks for connection lifecycle

    async def _error_callback(self, e: Exception) -> None:
        logger.error(f"NATS error: {e}")

    async def _disconnected_callback(self) -> None:
        logger.warning("Disconnected from NATS server")

    async def _reconnected_callback(self) -> None:
        logger.info(f"Reconnected to NATS server: {self._client.connected_url}")

    async def _closed_callback(self) -> None:
        logger.info("NATS connection closed")
