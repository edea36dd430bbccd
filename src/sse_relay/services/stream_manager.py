import logging
from typing import AsyncGenerator, Dict, Optional

from sse_starlette.sse import ServerSentEvent

from ..adapters import BusAdapter, create_adapter
from ..core.auth import Identity
from ..core.config import settings
from .bridge import BroadcastBridge, SubscriptionBridge, UserChannelBridge
from .connection import BoundedQueue, Connection, QueueClosed

logger = logging.getLogger(__name__)

# Frames end with a blank line: "data: <payload>\n\n"
FRAME_SEPARATOR = "\n"


class StreamManager:
    """
    Owns the bus adapter, the subscription bridge and the open streams.

    One instance per process. ``initialize`` must succeed before streams are
    served; a failure there is fatal for the relay.
    """

    def __init__(
        self,
        adapter: Optional[BusAdapter] = None,
        bridge: Optional[SubscriptionBridge] = None,
        queue_size: Optional[int] = None,
    ):
        self.adapter = adapter
        self.bridge = bridge
        self.queue_size = queue_size or settings.stream_queue_size
        # Active streams: connection_id -> connection
        self.active_connections: Dict[str, Connection] = {}

    def _get_bridge(self, adapter: BusAdapter) -> SubscriptionBridge:
        """Factory for the configured stream topology."""
        if settings.stream_topology == "broadcast":
            return BroadcastBridge(
                adapter,
                channel=settings.broadcast_channel,
                retry_interval=settings.broadcast_retry_interval,
            )
        return UserChannelBridge(adapter, channel_template=settings.user_channel_template)

    async def initialize(self) -> None:
        """
        Connect to the bus and start the bridge.

        Raises:
            ConnectionError: If the bus is unreachable
            SubscriptionError: If the broadcast subscription cannot be created
        """
        if self.adapter is None:
            self.adapter = create_adapter(
                settings.bus_url,
                nats_reconnect_time_wait=settings.nats_reconnect_time_wait,
                nats_max_reconnect_attempts=settings.nats_max_reconnect_attempts,
            )
        if self.bridge is None:
            self.bridge = self._get_bridge(self.adapter)

        logger.info(
            f"Starting SSE relay with {self.adapter.name} "
            f"({self.bridge.topology} topology)"
        )
        await self.adapter.connect()
        await self.bridge.start()

    async def shutdown(self) -> None:
        """Close every stream, stop the bridge and disconnect the bus."""
        logger.info("Shutting down SSE relay")

        for connection in list(self.active_connections.values()):
            connection.close()

        if self.bridge:
            await self.bridge.stop()
        if self.adapter:
            await self.adapter.disconnect()

        logger.info("SSE relay shutdown complete")

    async def open_stream(self, identity: Identity) -> AsyncGenerator[ServerSentEvent, None]:
        """
        Stream the messages routed to ``identity`` as SSE frames.

        Runs until the client goes away (the response task is cancelled), the
        bridge closes the connection, or the relay shuts down. Each queued
        payload becomes exactly one ``data:`` frame.
        """
        if self.bridge is None:
            raise RuntimeError("Stream manager not initialized")

        connection = Connection(identity=identity, queue=BoundedQueue(self.queue_size))
        self.active_connections[connection.id] = connection
        logger.info(f"Authenticated SSE connection {connection.id} for user {identity}")

        try:
            async with self.bridge.attach(connection):
                while True:
                    try:
                        payload = await connection.queue.get()
                    except QueueClosed:
                        break
                    yield ServerSentEvent(data=payload, sep=FRAME_SEPARATOR)
        finally:
            self.active_connections.pop(connection.id, None)
            connection.close()
            logger.info(f"Closing SSE for user {identity} (connection {connection.id})")


# Global instance
stream_manager = StreamManager()
