"""Realtime hub: owns the registry, binder and publisher for one app.

Learn: Instead of a module-level dict reached into from route handlers,
the hub is created by create_app() and stored on app.state. Route
handlers get the publisher through the get_publisher dependency, the
WebSocket endpoint through websocket.app.state. Shutdown closes every
socket still open.

Single process only: the registry is never shared across workers.
"""

import structlog
from starlette.requests import HTTPConnection

from snapserve.realtime.binder import AuthBinder
from snapserve.realtime.publisher import SEND_TIMEOUT_SECONDS, EventPublisher
from snapserve.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

GOING_AWAY = 1001


class RealtimeHub:
    """Everything the push channel needs, with an explicit lifecycle."""

    def __init__(self, trust_claims: bool = True, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.registry = ConnectionRegistry()
        self.binder = AuthBinder(self.registry, trust_claims=trust_claims)
        self.publisher = EventPublisher(self.registry, send_timeout=send_timeout)
        self.closed = False

    async def close(self) -> None:
        """Close every live socket and empty the registry."""
        self.closed = True
        connections = self.registry.connections()
        for connection in connections:
            self.registry.mark_closing(connection.id)
            try:
                await connection.socket.close(code=GOING_AWAY)
            except Exception as e:
                logger.debug(
                    "snapserve.hub.close_failed",
                    connection_id=connection.id,
                    error=str(e),
                )
            self.registry.unregister(connection.id)
        logger.info("snapserve.hub.closed", closed_connections=len(connections))


def get_hub(conn: HTTPConnection) -> RealtimeHub:
    """FastAPI dependency: the app's hub (works for HTTP and WebSocket)."""
    return conn.app.state.realtime


def get_publisher(conn: HTTPConnection) -> EventPublisher:
    """FastAPI dependency used by services that emit events."""
    return get_hub(conn).publisher
