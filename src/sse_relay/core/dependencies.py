"""FastAPI dependencies for stream request handling."""

import logging
from typing import Optional

from fastapi import HTTPException, Query, status

from sse_relay.core.auth import AuthError, TokenClaims, verify_token
from sse_relay.core.config import settings

logger = logging.getLogger(__name__)

# Sent on every stream response, including refusals
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
}


async def authenticate(
    ssetoken: Optional[str] = Query(
        None,
        description="Signed stream token issued by the backend",
    ),
) -> TokenClaims:
    """
    Dependency that verifies the stream token from the query string.

    Every failure is answered with the same 401 so clients cannot tell which
    check failed; the reason is only logged.
    """
    try:
        return verify_token(
            ssetoken or "",
            settings.token_secret,
            algorithms=settings.jwt_algorithms,
            identity_claim=settings.identity_claim,
        )
    except AuthError as e:
        logger.warning(f"Token verification failed: {e.reason}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers=CORS_HEADERS,
        )
