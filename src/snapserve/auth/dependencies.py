"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

Customers ordering from a table are usually anonymous, so order and
feedback creation use the optional dependency. Staff screens use
require_role("staff", "admin"), which answers 401 without a token and
403 for the wrong role.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Header

from snapserve.auth.jwt import TokenError, verify_token

ROLES = ("customer", "staff", "admin")


class CurrentIdentity:
    """Represents the authenticated user making the request."""

    def __init__(self, user_id: int, role: str):
        self.user_id = user_id
        self.role = role

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional, returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
        return _authenticate_jwt(token)
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required, 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_role(*roles: str):
    """Build a dependency that only lets the given roles through."""

    async def _check(
        identity: CurrentIdentity = Depends(get_current_user),
    ) -> CurrentIdentity:
        if not identity.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return _check


def identity_from_token(token: str) -> CurrentIdentity:
    """Decode a token into an identity. Raises TokenError."""
    payload = verify_token(token)
    return CurrentIdentity(user_id=payload["sub"], role=payload["role"])


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT token."""
    try:
        return identity_from_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
