"""Connection registry: every live WebSocket and the identity it claimed.

Learn: The registry is the only shared mutable state in the realtime
layer. All mutations are plain synchronous method calls, so on a single
asyncio event loop they run to completion between awaits and need no
locking.

Lifecycle of an entry:
1. register() at accept time: fresh id, no identity, state OPEN
2. set_identity() once the channel authenticates (or from the handshake token)
3. unregister() when the socket closes or errors: entry removed, id retired

Retired ids are never handed out or inserted again.
"""

import enum
import itertools
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog
from starlette.websockets import WebSocketState

logger = structlog.get_logger()


class ConnectionState(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Rule(Protocol):
    """Anything that can select connections (see publisher.TargetRule)."""

    def matches(self, connection: "Connection") -> bool: ...


@dataclass
class Connection:
    """One live push channel."""

    id: str
    socket: Any
    user_id: Optional[int] = None
    role: Optional[str] = None
    verified: bool = False  # identity came from the handshake token
    state: ConnectionState = ConnectionState.OPEN

    @property
    def authenticated(self) -> bool:
        return self.role is not None

    def is_open(self) -> bool:
        """True while both our bookkeeping and the transport say open."""
        if self.state is not ConnectionState.OPEN:
            return False
        # Starlette WebSockets expose both sides of the handshake state;
        # other transports (tests, adapters) may expose neither.
        for attr in ("client_state", "application_state"):
            transport_state = getattr(self.socket, attr, None)
            if transport_state is not None and transport_state != WebSocketState.CONNECTED:
                return False
        return True


class ConnectionRegistry:
    """Authoritative set of live connections and their identity tags."""

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def _new_id(self) -> str:
        # Sequence prefix makes ids unique for the registry's lifetime,
        # the random suffix keeps them unguessable.
        return f"{next(self._sequence):x}-{uuid.uuid4().hex[:12]}"

    def register(self, socket: Any) -> str:
        """Store a freshly accepted socket with no identity. Returns its id."""
        connection_id = self._new_id()
        self._connections[connection_id] = Connection(id=connection_id, socket=socket)
        logger.debug(
            "snapserve.registry.registered",
            connection_id=connection_id,
            total=len(self._connections),
        )
        return connection_id

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def set_identity(
        self,
        connection_id: str,
        user_id: Optional[int],
        role: Optional[str],
        verified: bool = False,
    ) -> None:
        """Attach identity to an entry.

        Silently ignored when the connection is already gone: a socket can
        close between accept and authentication.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        connection.user_id = user_id
        connection.role = role
        connection.verified = verified
        logger.info(
            "snapserve.registry.identified",
            connection_id=connection_id,
            user_id=user_id,
            role=role,
            verified=verified,
        )

    def mark_closing(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.state = ConnectionState.CLOSING

    def unregister(self, connection_id: str) -> None:
        """Remove an entry. Removing an absent id is not an error."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        connection.state = ConnectionState.CLOSED
        logger.debug(
            "snapserve.registry.unregistered",
            connection_id=connection_id,
            total=len(self._connections),
        )

    def matching(self, rule: Rule) -> list[Connection]:
        """Open connections selected by ``rule``.

        Returns a snapshot list so callers may await between sends while
        sockets come and go.
        """
        return [
            c for c in self._connections.values()
            if c.is_open() and rule.matches(c)
        ]

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def count_by_role(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for connection in self._connections.values():
            key = connection.role or "anonymous"
            counts[key] = counts.get(key, 0) + 1
        return counts
