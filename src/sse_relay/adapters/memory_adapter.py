"""
In-memory adapter for the SSE Relay.

This adapter is primarily used for:
- Local development without a running bus (``memory://``)
- Unit testing

Messages are delivered directly to handlers during ``publish``.
"""
import logging
from typing import Dict, List, Set
from uuid import uuid4

from .base import BusAdapter, LostCallback, MessageHandler

logger = logging.getLogger(__name__)


class MemoryAdapter(BusAdapter):
    """
    In-memory bus for development and testing.

    Channels are matched exactly. Each published message is handed to every
    subscriber of the channel, in subscription order, before ``publish``
    returns. Nothing is stored.
    """

    def __init__(self):
        self._connected = False
        self._handlers: Dict[str, MessageHandler] = {}
        # Channel -> subscription IDs
        self._channel_subs: Dict[str, Set[str]] = {}
        self._sub_channels: Dict[str, List[str]] = {}

    async def connect(self) -> None:
        """Mark adapter as connected."""
        if self._connected:
            logger.warning("Memory adapter already connected")
            return

        self._connected = True
        logger.info("Memory adapter connected (in-memory mode)")

    async def disconnect(self) -> None:
        """Disconnect and clean up subscriptions."""
        self._handlers.clear()
        self._channel_subs.clear()
        self._sub_channels.clear()
        self._connected = False
        logger.info("Memory adapter disconnected")

    async def publish(self, channel: str, payload: str) -> None:
        """Deliver a payload to every subscriber of the channel."""
        if not self._connected:
            raise ConnectionError("Memory adapter not connected")

        sub_ids = [s for s in self._handlers if s in self._channel_subs.get(channel, ())]
        if not sub_ids:
            logger.debug(f"No subscribers for channel: {channel}")
            return

        for sub_id in sub_ids:
            handler = self._handlers.get(sub_id)
            if handler is None:
                continue
            try:
                await handler(channel, payload)
            except Exception as e:
                logger.error(f"Handler error for channel {channel}: {e}")

    async def subscribe(
        self,
        channels: List[str],
        handler: MessageHandler,
        subscription_id: str | None = None,
        on_lost: LostCallback | None = None,
    ) -> str:
        if not self._connected:
            raise ConnectionError("Memory adapter not connected")

        sub_id = subscription_id or str(uuid4())
        self._handlers[sub_id] = handler
        self._sub_channels[sub_id] = list(channels)
        for channel in channels:
            self._channel_subs.setdefault(channel, set()).add(sub_id)

        logger.info(f"Subscribed to {channels} (sub_id: {sub_id})")
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        if subscription_id not in self._handlers:
            logger.debug(f"Subscription {subscription_id} not found")
            return

        del self._handlers[subscription_id]
        for channel in self._sub_channels.pop(subscription_id, []):
            subs = self._channel_subs.get(channel)
            if subs is not None:
                subs.discard(subscription_id)
                if not subs:
                    del self._channel_subs[channel]

        logger.info(f"Unsubscribed: {subscription_id}")

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def subscription_count(self) -> int:
        return len(self._handlers)

    def subscribers(self, channel: str) -> int:
        """Number of subscriptions listening on a channel."""
        return len(self._channel_subs.get(channel, ()))
