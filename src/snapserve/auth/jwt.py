"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. A staff
terminal gets one access token per shift; the same token authenticates
HTTP calls (Authorization: Bearer) and the WebSocket handshake (?token=).

The token carries the user id and role, which is all the push channel
needs to decide what a connection may receive.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from snapserve.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: int,
    role: str,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "exp": expires,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type") != "access":
        raise TokenError("Not an access token")
    if not isinstance(payload.get("role"), str):
        raise TokenError("Token has no role")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenError("Token subject is not a user id")
    return payload
