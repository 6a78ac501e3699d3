"""WebSocket endpoint: real-time order events for staff and admin screens.

Learn: Each client connects to /ws (optionally /ws?token=JWT). The handler:
1. Verifies the handshake token if one was sent (bad token → close 4001)
2. Accepts and registers the socket in the hub's registry
3. Reads inbound frames and hands them to the AuthBinder
4. Unregisters on disconnect or error, whatever the cause

Outbound traffic doesn't flow through this handler at all: services call
the EventPublisher, which writes straight to the registered sockets.
This is a long-lived connection, one per browser tab or staff terminal.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from snapserve.auth.dependencies import identity_from_token
from snapserve.auth.jwt import TokenError
from snapserve.config import settings
from snapserve.realtime.hub import RealtimeHub, get_hub

logger = structlog.get_logger()
router = APIRouter()

INVALID_TOKEN = 4001


@router.websocket(settings.ws_path)
async def events_websocket(websocket: WebSocket):
    """Push channel for order and feedback events.

    Authentication: either ?token= at handshake (verified, preferred) or an
    in-band {"type": "AUTH", "userId": ..., "role": ...} message after
    connecting (trusted claim, see AuthBinder).
    """
    hub: RealtimeHub = get_hub(websocket)

    # ── Handshake authentication ────────────────────────────
    identity = None
    token = websocket.query_params.get("token")
    if token:
        try:
            identity = identity_from_token(token)
        except TokenError as e:
            logger.info("snapserve.ws.token_rejected", error=str(e))
            await websocket.close(code=INVALID_TOKEN, reason="Invalid or expired token")
            return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    connection_id = hub.registry.register(websocket)
    if identity:
        hub.registry.set_identity(
            connection_id, identity.user_id, identity.role, verified=True
        )

    client = websocket.client
    logger.info(
        "snapserve.ws.connected",
        connection_id=connection_id,
        client=f"{client.host}:{client.port}" if client else None,
        verified=identity is not None,
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            data = message.get("text")
            if data is None:
                # Binary frames get the same treatment as bad text frames
                data = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            hub.binder.handle(connection_id, data)
    except WebSocketDisconnect as e:
        logger.info("snapserve.ws.disconnected", connection_id=connection_id, code=e.code)
    except Exception as e:
        # Transport errors end this connection only
        logger.warning("snapserve.ws.error", connection_id=connection_id, error=str(e))
    finally:
        hub.registry.unregister(connection_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except (RuntimeError, OSError) as e:
                logger.debug("snapserve.ws.close_failed", connection_id=connection_id, error=str(e))
