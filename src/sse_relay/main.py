"""
SSE Relay - Main FastAPI Application

Bridges a publish/subscribe bus (Redis, NATS) to long-lived Server-Sent
Events streams, so backends that cannot hold open async connections can
still push events to browsers.

Key Features:
- Token-authenticated ``GET /sse-events`` streams
- Per-user channel subscriptions or a shared broadcast channel
- Bounded per-connection queues; slow clients never stall the bus
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import router
from .core.config import settings
from .services.stream_manager import stream_manager

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup connects to the bus; there is no degraded mode, so a failure
    aborts startup.
    """
    try:
        await stream_manager.initialize()
    except Exception as e:
        logger.critical(f"Bus error: {e}")
        raise
    logger.info(f"SSE relay ready on port {settings.port}")

    yield

    await stream_manager.shutdown()


app = FastAPI(
    title="SSE Relay",
    description="Relays pub/sub bus messages to Server-Sent Events streams",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


def run() -> None:
    """Console entry point: serve the relay with uvicorn."""
    import uvicorn

    logger.info(f"[SSE-RELAY] Server running on :{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
