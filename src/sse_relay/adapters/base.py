"""
Base adapter interface for message bus backends.

Adapters hand payloads to the relay exactly as the bus delivered them: the
relay never parses or re-encodes message content.
"""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List
from urllib.parse import urlsplit, urlunsplit

# Handler receives (channel, payload)
MessageHandler = Callable[[str, str], Awaitable[None]]

# Called once if the bus drops a subscription after it was confirmed
LostCallback = Callable[[], None]


class BusAdapter(ABC):
    """
    Abstract base class for message bus adapters.

    Handlers registered through ``subscribe`` are awaited one message at a
    time per subscription, so a subscription's handler sees payloads in the
    order the bus delivered them. Handlers must not block.
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the shared connection to the message bus.

        Raises:
            ConnectionError: If the bus is unreachable
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Cancel all subscriptions and close the connection."""
        pass

    @abstractmethod
    async def publish(self, channel: str, payload: str) -> None:
        """
        Publish a raw payload to a channel.

        Raises:
            PublishError: If the message could not be published
            ConnectionError: If not connected to the message bus
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        channels: List[str],
        handler: MessageHandler,
        subscription_id: str | None = None,
        on_lost: LostCallback | None = None,
    ) -> str:
        """
        Subscribe to one or more channels.

        The subscription is confirmed by the bus before this returns.

        Args:
            channels: Channel names to subscribe to
            handler: Async callback receiving (channel, payload)
            subscription_id: Optional identifier for this subscription
            on_lost: Optional callback fired if the subscription dies

        Returns:
            Subscription ID that can be used to unsubscribe

        Raises:
            SubscriptionError: If the subscription could not be created
            ConnectionError: If not connected to the message bus
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription_id: str) -> None:
        """Cancel a subscription. Unknown IDs are ignored."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the adapter is connected to the message bus."""
        pass

    @property
    @abstractmethod
    def subscription_count(self) -> int:
        """Number of live subscriptions."""
        pass

    @property
    def name(self) -> str:
        """Return the adapter name for logging."""
        return self.__class__.__name__


class AdapterError(Exception):
    """Base exception for adapter errors."""
    pass


class PublishError(AdapterError):
    """Raised when a message could not be published."""
    pass


class SubscriptionError(AdapterError):
    """Raised when a subscription could not be created."""
    pass


def redact_url(url: str) -> str:
    """Strip credentials from a bus URL before it is logged."""
    parts = urlsplit(url)
    if parts.password is None and parts.username is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))
