from fastapi import APIRouter

from ... import __version__
from ...core.config import settings
from ...models.schemas import HealthResponse, ServiceInfo
from ...services.stream_manager import stream_manager

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns bus connection state, the stream topology and the number of
    open streams. Degraded when the bus is down or the broadcast
    subscription has not been restored yet.
    """
    adapter = stream_manager.adapter
    bridge = stream_manager.bridge
    connected = adapter is not None and adapter.is_connected
    subscribed = bridge is not None and bridge.healthy
    return HealthResponse(
        status="healthy" if connected and subscribed else "degraded",
        adapter=adapter.name if adapter else "none",
        connected=connected,
        subscribed=subscribed,
        topology=bridge.topology if bridge else settings.stream_topology,
        active_streams=len(stream_manager.active_connections),
    )


@router.get("/", response_model=ServiceInfo)
async def root() -> ServiceInfo:
    """Root endpoint with service info."""
    return ServiceInfo(service=settings.service_name, version=__version__)
