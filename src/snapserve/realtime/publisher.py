"""Event publisher: serialize once, fan out to every matching connection.

Learn: Publishing is fire-and-forget. If nobody with the target role is
connected the event is simply dropped; that's fine for live dashboards
(staff screens re-fetch over HTTP on reconnect and on their own polling
interval). The order or feedback has already been committed before we
get here, so nothing in this module may raise into the request handler.

Delivery guarantees:
- at most once per connection per publish call
- sends run concurrently, each bounded by send_timeout, so a peer that
  stopped reading delays nobody else and never stalls the request
- a failing or stuck socket is skipped, the rest of the fan-out continues
- a single connection sees events in the order they were published, as
  long as callers await each publish before the next
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from snapserve.events.types import Event
from snapserve.realtime.registry import Connection, ConnectionRegistry

logger = structlog.get_logger()

# Order-lifecycle and feedback alerts go to both roles, one publish each,
# so either role's audience can change independently.
STAFF_ROLES = ("staff", "admin")

SEND_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class TargetRule:
    """Which live connections should receive an event.

    ``role=None`` means everyone, authenticated or not.
    """

    role: Optional[str] = None

    @classmethod
    def to_role(cls, role: str) -> "TargetRule":
        return cls(role=role)

    @classmethod
    def everyone(cls) -> "TargetRule":
        return cls(role=None)

    @property
    def is_broadcast(self) -> bool:
        return self.role is None

    def matches(self, connection: Connection) -> bool:
        if self.role is None:
            return True
        return connection.role == self.role


class EventPublisher:
    """Delivers events to connections selected from the registry."""

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.registry = registry
        self.send_timeout = send_timeout

    async def publish(self, event: Event, rule: TargetRule) -> int:
        """Send ``event`` to every open connection matching ``rule``.

        Returns the number of connections the event was handed to.
        """
        try:
            message = json.dumps(event.to_message(), default=str)
        except (TypeError, ValueError):
            logger.exception("snapserve.publish.serialize_failed", event_type=event.type)
            return 0

        targets = self.registry.matching(rule)
        results = await asyncio.gather(
            *(self._send(connection, message, event.type) for connection in targets)
        )
        delivered = sum(results)

        logger.info(
            "snapserve.publish.sent",
            event_type=event.type,
            target="all" if rule.is_broadcast else rule.role,
            matched=len(targets),
            delivered=delivered,
        )
        return delivered

    async def _send(self, connection: Connection, message: str, event_type: str) -> bool:
        """One bounded send. Never raises; False when the peer missed the event."""
        if not connection.is_open():
            return False
        try:
            await asyncio.wait_for(connection.socket.send_text(message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "snapserve.publish.send_timeout",
                connection_id=connection.id,
                event_type=event_type,
                timeout=self.send_timeout,
            )
            return False
        except Exception as e:
            logger.warning(
                "snapserve.publish.send_failed",
                connection_id=connection.id,
                event_type=event_type,
                error=str(e),
            )
            return False
        return True

    async def publish_to_roles(self, event: Event, roles: Iterable[str]) -> int:
        """One role-scoped publish per role. Returns the total delivered."""
        delivered = 0
        for role in roles:
            delivered += await self.publish(event, TargetRule.to_role(role))
        return delivered

    async def publish_to_staff(self, event: Event) -> int:
        return await self.publish_to_roles(event, STAFF_ROLES)
