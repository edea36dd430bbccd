from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    adapter: str = Field(..., description="Active bus adapter")
    connected: bool = Field(..., description="Whether the bus adapter is connected")
    subscribed: bool = Field(..., description="Whether new streams will receive messages")
    topology: str = Field(..., description="Stream topology (per_user or broadcast)")
    active_streams: int = Field(..., description="Number of open SSE streams")


class ServiceInfo(BaseModel):
    """Root endpoint response."""
    service: str
    version: str
