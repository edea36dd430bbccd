"""
Pytest configuration for SSE Relay tests.
"""
import os
import time

# Set test environment variables before the relay is imported
os.environ["SSE_RELAY_BUS_URL"] = "memory://"
os.environ["SSE_RELAY_TOKEN_SECRET"] = "relay-test-secret-for-hmac-signing-0123456789abcdef0123456789abcd"
os.environ["SSE_RELAY_DEBUG"] = "true"

import jwt
import pytest

from sse_relay.adapters import MemoryAdapter
from sse_relay.services.bridge import UserChannelBridge
from sse_relay.services.stream_manager import StreamManager

TEST_SECRET = os.environ["SSE_RELAY_TOKEN_SECRET"]


@pytest.fixture
def make_token():
    """Factory for signed stream tokens."""
    def _make_token(
        identity=42,
        *,
        secret=TEST_SECRET,
        expires_in=300,
        algorithm="HS256",
        claim="user_id",
    ) -> str:
        payload = {"exp": int(time.time()) + expires_in}
        if identity is not None:
            payload[claim] = identity
        return jwt.encode(payload, secret, algorithm=algorithm)
    return _make_token


@pytest.fixture
async def adapter():
    """Create and connect a memory adapter for testing."""
    adapter = MemoryAdapter()
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def manager(adapter):
    """Stream manager wired to the memory adapter with per-user channels."""
    manager = StreamManager(
        adapter=adapter,
        bridge=UserChannelBridge(adapter, channel_template="events:user:{identity}"),
        queue_size=10,
    )
    yield manager
    for connection in list(manager.active_connections.values()):
        connection.close()
