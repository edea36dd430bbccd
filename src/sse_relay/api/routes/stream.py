import logging

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from ...core.auth import TokenClaims
from ...core.config import settings
from ...core.dependencies import CORS_HEADERS, authenticate
from ...services.stream_manager import FRAME_SEPARATOR, stream_manager

router = APIRouter(tags=["Events"])
logger = logging.getLogger(__name__)


@router.get("/sse-events")
async def stream_events(claims: TokenClaims = Depends(authenticate)) -> EventSourceResponse:
    """
    Stream events for the token's identity via Server-Sent Events.

    The connection stays open until the client disconnects or the relay shuts
    down. Each bus message is written as one frame:

        data: <payload>

    Requests without a valid, unexpired token get 401 and no subscription is
    made.
    """
    if stream_manager.bridge is None:
        raise HTTPException(status_code=503, detail="Stream relay not initialized")

    logger.debug(f"Stream token for user {claims.identity} expires at {claims.expires_at.isoformat()}")

    return EventSourceResponse(
        stream_manager.open_stream(claims.identity),
        headers={"Cache-Control": "no-cache", **CORS_HEADERS},
        ping=settings.stream_ping_interval,
        sep=FRAME_SEPARATOR,
    )
