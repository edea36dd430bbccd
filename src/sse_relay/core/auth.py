"""
Stream token verification.

Stream requests carry a short-lived JWT signed with the relay's shared secret.
Only HMAC algorithms are accepted; every other ``alg`` header is rejected
before the signature is checked.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Union

import jwt

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")

Identity = Union[int, str]


class AuthError(Exception):
    """Raised when a stream token cannot be accepted."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class TokenClaims:
    """Claims extracted from a verified stream token."""
    identity: Identity
    expires_at: datetime


def verify_token(
    token: str,
    secret: Union[str, bytes],
    *,
    algorithms: Iterable[str] = HMAC_ALGORITHMS,
    identity_claim: str = "user_id",
) -> TokenClaims:
    """
    Verify a stream token and extract its identity.

    Args:
        token: Encoded JWT taken from the stream request
        secret: Shared HMAC secret
        algorithms: Allowed signing algorithms (non-HMAC entries are ignored)
        identity_claim: Claim holding the identity; ``sub`` is used as a fallback

    Returns:
        TokenClaims with the identity and expiry instant

    Raises:
        AuthError: If the token is malformed, signed with another secret or
            algorithm, expired, or missing its identity
    """
    if not token:
        raise AuthError("missing token")

    allowed = [alg for alg in algorithms if alg in HMAC_ALGORITHMS]
    if not allowed:
        raise AuthError("no HMAC signing algorithm allowed")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        raise AuthError(f"token parse error: {e}") from e

    alg = header.get("alg")
    if alg not in allowed:
        raise AuthError(f"unexpected signing method: {alg}")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=allowed,
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError(f"token parse error: {e}") from e

    identity = payload.get(identity_claim)
    if identity is None:
        identity = payload.get("sub")
    if identity is None or identity == "" or isinstance(identity, (bool, dict, list, float)):
        raise AuthError(f"token missing {identity_claim} claim")

    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    # exp is enforced by PyJWT as well
    if expires_at <= datetime.now(timezone.utc):
        raise AuthError("token expired")

    return TokenClaims(identity=identity, expires_at=expires_at)
