"""
SSE Relay bus adapters

Adapter pattern implementation for the message bus backends the relay can
consume from (Redis, NATS, In-Memory). The bus URL scheme picks one.
"""
from urllib.parse import urlsplit

from .base import AdapterError, BusAdapter, PublishError, SubscriptionError
from .memory_adapter import MemoryAdapter
from .nats_adapter import NatsAdapter
from .redis_adapter import RedisAdapter

REDIS_SCHEMES = ("redis", "rediss", "unix")
NATS_SCHEMES = ("nats", "tls")


def create_adapter(
    url: str,
    nats_reconnect_time_wait: int = 2,
    nats_max_reconnect_attempts: int = -1,
) -> BusAdapter:
    """
    Create the adapter matching a bus URL.

    Raises:
        ValueError: If the URL scheme is not supported
    """
    scheme = urlsplit(url).scheme.lower()

    if scheme in REDIS_SCHEMES:
        return RedisAdapter(url=url)
    elif scheme in NATS_SCHEMES:
        return NatsAdapter(
            url=url,
            reconnect_time_wait=nats_reconnect_time_wait,
            max_reconnect_attempts=nats_max_reconnect_attempts,
        )
    elif scheme == "memory":
        return MemoryAdapter()
    else:
        raise ValueError(f"Unsupported bus URL scheme: {scheme!r}")


__all__ = [
    "AdapterError",
    "BusAdapter",
    "MemoryAdapter",
    "NatsAdapter",
    "PublishError",
    "RedisAdapter",
    "SubscriptionError",
    "create_adapter",
]
