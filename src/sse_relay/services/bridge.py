"""
Subscription bridges: connect bus subscriptions to per-connection queues.

Two topologies are available and one is chosen per process:

``per_user``
    Every connection gets its own bus subscription on a channel derived from
    its identity. A full queue drops the message.

``broadcast``
    One subscription on a shared channel, restored if the bus drops it. A single
    coordinator task owns the registry of connections and fans each message
    out to all of them. A full queue evicts the connection.

In both cases payloads are forwarded verbatim and in the order the bus
delivered them, and the bus reader is never blocked by a slow client.
"""
import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Literal, Optional

from ..adapters.base import AdapterError, BusAdapter
from ..core.auth import Identity
from .connection import Connection

logger = logging.getLogger(__name__)


class SubscriptionBridge(ABC):
    """Attaches connections to their message source."""

    topology: str = ""

    def __init__(self, adapter: BusAdapter):
        self._adapter = adapter

    async def start(self) -> None:
        """Start process-wide resources, if the topology has any."""
        pass

    async def stop(self) -> None:
        """Release process-wide resources."""
        pass

    @abstractmethod
    def attach(self, connection: Connection) -> AsyncIterator[Connection]:
        """
        Async context manager feeding the connection's queue.

        Leaving the context detaches the connection from its source and
        closes its queue.
        """
        pass

    async def count(self) -> int:
        """Number of connections currently attached."""
        return 0

    @property
    def healthy(self) -> bool:
        """Whether newly attached connections will receive messages."""
        return True


def _log_unsubscribe_failure(subscription_id: str, task: "asyncio.Future[None]") -> None:
    # Runs even when the awaiting request was cancelled before the task finished
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Error unsubscribing {subscription_id}: {task.exception()}")


class UserChannelBridge(SubscriptionBridge):
    """One dedicated bus subscription per connection."""

    topology = "per_user"

    def __init__(self, adapter: BusAdapter, channel_template: str = "events:user:{identity}"):
        super().__init__(adapter)
        self._channel_template = channel_template
        self._attached = 0

    def channel_for(self, identity: Identity) -> str:
        return self._channel_template.format(identity=identity)

    @asynccontextmanager
    async def attach(self, connection: Connection) -> AsyncIterator[Connection]:
        channel = self.channel_for(connection.identity)

        async def forward(_channel: str, payload: str) -> None:
            if not connection.queue.try_put(payload) and not connection.closed:
                logger.warning(f"Dropping message for user {connection.identity} (client slow)")

        logger.info(f"Subscribing to channel {channel} for connection {connection.id}")
        subscription_id: Optional[str] = None
        try:
            subscription_id = await self._adapter.subscribe(
                [channel],
                handler=forward,
                subscription_id=connection.id,
                on_lost=connection.close,
            )
        except (AdapterError, ConnectionError) as e:
            logger.error(f"Failed to subscribe to {channel}: {e}")
            connection.close()

        if subscription_id is not None:
            self._attached += 1
        try:
            yield connection
        finally:
            connection.close()
            if subscription_id is not None:
                self._attached -= 1
                logger.info(f"Stopping subscription for user {connection.identity}")
                unsubscribe = asyncio.ensure_future(self._adapter.unsubscribe(subscription_id))
                unsubscribe.add_done_callback(
                    functools.partial(_log_unsubscribe_failure, subscription_id)
                )
                try:
                    await asyncio.shield(unsubscribe)
                except Exception:
                    pass  # logged by _log_unsubscribe_failure

    async def count(self) -> int:
        return self._attached


@dataclass
class _Command:
    kind: Literal["register", "deregister", "broadcast", "count", "reset", "shutdown"]
    connection: Optional[Connection] = None
    payload: Optional[str] = None
    reply: Optional["asyncio.Future[int]"] = None


class BroadcastBridge(SubscriptionBridge):
    """
    Shared subscription with in-process fan-out.

    The registry is only ever touched by ``_coordinate``. Everything else
    talks to it by submitting commands, which the coordinator applies one at
    a time in submission order. A message is therefore delivered to exactly
    the connections registered before it arrived.

    If the bus drops the shared subscription, the connections registered at
    that moment are closed (clients reconnect) and a background task
    resubscribes every ``retry_interval`` seconds until it succeeds.
    """

    topology = "broadcast"

    def __init__(
        self,
        adapter: BusAdapter,
        channel: str = "events:broadcast",
        retry_interval: float = 1.0,
    ):
        super().__init__(adapter)
        self._channel = channel
        self._retry_interval = retry_interval
        self._commands: "asyncio.Queue[_Command]" = asyncio.Queue()
        self._registry: Dict[str, Connection] = {}
        self._coordinator_task: Optional[asyncio.Task] = None
        self._resubscribe_task: Optional[asyncio.Task] = None
        self._subscription_id: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._coordinator_task is not None and not self._coordinator_task.done()

    @property
    def subscribed(self) -> bool:
        return self._subscription_id is not None

    @property
    def healthy(self) -> bool:
        return self.running and self.subscribed

    async def start(self) -> None:
        """
        Start the coordinator and subscribe to the broadcast channel.

        Raises:
            SubscriptionError: If the shared subscription cannot be created
            ConnectionError: If the bus is not connected
        """
        if self.running:
            logger.warning("Broadcast bridge already running")
            return

        self._coordinator_task = asyncio.create_task(self._coordinate())
        try:
            await self._subscribe()
        except Exception:
            await self.stop()
            raise
        logger.info(f"Broadcasting channel {self._channel} to registered connections")

    async def stop(self) -> None:
        """Drop the shared subscription and close every registered connection."""
        if self._resubscribe_task is not None:
            self._resubscribe_task.cancel()
            try:
                await self._resubscribe_task
            except asyncio.CancelledError:
                pass
            self._resubscribe_task = None

        if self._subscription_id is not None:
            subscription_id, self._subscription_id = self._subscription_id, None
            try:
                await self._adapter.unsubscribe(subscription_id)
            except Exception as e:
                logger.warning(f"Error unsubscribing {subscription_id}: {e}")

        if self.running:
            self._submit(_Command("shutdown"))
            await self._coordinator_task
        self._coordinator_task = None

    @asynccontextmanager
    async def attach(self, connection: Connection) -> AsyncIterator[Connection]:
        if self.running:
            self._submit(_Command("register", connection=connection))
        else:
            logger.error(f"Broadcast bridge not running; closing connection {connection.id}")
            connection.close()
        try:
            yield connection
        finally:
            connection.close()
            if self.running:
                self._submit(_Command("deregister", connection=connection))

    async def count(self) -> int:
        """Registry size, read by the coordinator."""
        if not self.running:
            return 0
        reply: "asyncio.Future[int]" = asyncio.get_running_loop().create_future()
        self._submit(_Command("count", reply=reply))
        return await reply

    async def drain(self) -> None:
        """Wait until every command submitted so far has been applied."""
        if self.running:
            await self._commands.join()

    def _submit(self, command: _Command) -> None:
        self._commands.put_nowait(command)

    async def _subscribe(self) -> None:
        self._subscription_id = await self._adapter.subscribe(
            [self._channel],
            handler=self._on_message,
            on_lost=self._on_lost,
        )

    async def _on_message(self, _channel: str, payload: str) -> None:
        self._submit(_Command("broadcast", payload=payload))

    def _on_lost(self) -> None:
        self._subscription_id = None
        if not self.running:
            return
        logger.error(f"Broadcast subscription on {self._channel} lost; closing open streams")
        self._submit(_Command("reset"))
        if self._resubscribe_task is None or self._resubscribe_task.done():
            self._resubscribe_task = asyncio.create_task(self._resubscribe())

    async def _resubscribe(self) -> None:
        """Retry the shared subscription until it is back or the bridge stops."""
        while self.running:
            await asyncio.sleep(self._retry_interval)
            try:
                await self._subscribe()
            except (AdapterError, ConnectionError) as e:
                logger.warning(f"Resubscribe to {self._channel} failed: {e}")
                continue
            logger.info(f"Resubscribed to broadcast channel {self._channel}")
            return

    async def _coordinate(self) -> None:
        """Apply registry commands one at a time. Sole owner of ``_registry``."""
        while True:
            command = await self._commands.get()
            try:
                if command.kind == "register":
                    conn = command.connection
                    if not conn.closed:
                        self._registry[conn.id] = conn
                        logger.info(f"Registered connection {conn.id} for user {conn.identity}")
                elif command.kind == "deregister":
                    if self._registry.pop(command.connection.id, None) is not None:
                        logger.info(f"Deregistered connection {command.connection.id}")
                elif command.kind == "broadcast":
                    self._broadcast(command.payload)
                elif command.kind == "count":
                    if not command.reply.done():
                        command.reply.set_result(len(self._registry))
                elif command.kind == "reset":
                    self._close_registered()
                elif command.kind == "shutdown":
                    self._close_registered()
                    self._answer_pending()
                    return
            finally:
                self._commands.task_done()

    def _broadcast(self, payload: str) -> None:
        evicted = [conn for conn in self._registry.values() if not conn.queue.try_put(payload)]
        for conn in evicted:
            del self._registry[conn.id]
            conn.close()
            logger.warning(f"Evicted slow connection {conn.id} for user {conn.identity}")

    def _close_registered(self) -> None:
        for conn in self._registry.values():
            conn.close()
        self._registry.clear()

    def _answer_pending(self) -> None:
        """Resolve commands queued behind a shutdown so no caller hangs."""
        while not self._commands.empty():
            command = self._commands.get_nowait()
            if command.kind == "register" and command.connection is not None:
                command.connection.close()
            elif command.kind == "count" and not command.reply.done():
                command.reply.set_result(0)
            self._commands.task_done()
