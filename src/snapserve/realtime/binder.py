"""Authentication binder: turn an in-band AUTH message into an identity.

Learn: The browser (or staff terminal) opens /ws and then sends
{"type": "AUTH", "userId": 7, "role": "staff"}. There is no ack and no
challenge: the claim is bound as-is unless one of these applies:

1. The socket already has an identity verified from its ?token= handshake.
   The claim is then only a hint and never overrides the token.
2. ws_trust_claimed_identity is off. Only token identities count.

Anything that isn't a well-formed AUTH message is ignored. A bad frame
never closes the connection; the socket just stays unauthenticated and
only receives broadcast-to-everyone events.
"""

import json
from typing import Any, Optional

import structlog

from snapserve.events.types import AUTH
from snapserve.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class AuthBinder:
    """Binds claimed identities to registry entries."""

    def __init__(self, registry: ConnectionRegistry, trust_claims: bool = True):
        self.registry = registry
        self.trust_claims = trust_claims

    def handle(self, connection_id: str, raw: str) -> bool:
        """Process one inbound text frame. Returns True if identity was bound."""
        message = self._parse(connection_id, raw)
        if message is None:
            return False

        if message.get("type") != AUTH:
            logger.debug(
                "snapserve.ws.message_ignored",
                connection_id=connection_id,
                message_type=message.get("type"),
            )
            return False

        user_id = message.get("userId")
        role = message.get("role")
        # bool is an int subclass; reject it explicitly
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            logger.warning("snapserve.ws.auth_malformed", connection_id=connection_id, field="userId")
            return False
        if not isinstance(role, str) or not role:
            logger.warning("snapserve.ws.auth_malformed", connection_id=connection_id, field="role")
            return False

        connection = self.registry.get(connection_id)
        if connection is None:
            return False

        if connection.verified:
            if (connection.user_id, connection.role) != (user_id, role):
                logger.warning(
                    "snapserve.ws.auth_claim_mismatch",
                    connection_id=connection_id,
                    claimed_user_id=user_id,
                    claimed_role=role,
                    token_user_id=connection.user_id,
                    token_role=connection.role,
                )
            return False

        if not self.trust_claims:
            logger.info("snapserve.ws.auth_claim_untrusted", connection_id=connection_id)
            return False

        self.registry.set_identity(connection_id, user_id, role)
        return True

    def _parse(self, connection_id: str, raw: str) -> Optional[dict[str, Any]]:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("snapserve.ws.bad_frame", connection_id=connection_id, error=str(e))
            return None
        if not isinstance(message, dict):
            logger.warning("snapserve.ws.bad_frame", connection_id=connection_id, error="not an object")
            return None
        return message
