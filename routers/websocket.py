"""
WebSocket endpoint for realtime lifecycle events.

Clients connect to /ws?token=<session token>. The token is checked once
during the handshake. A connection without a valid token is accepted and
then immediately closed with 1008 (policy violation); closing before accept
would surface as an HTTP 403 and the client would never see the code.
Accepted connections only receive {type, payload} events; a client "ping"
text frame is answered with "pong".
"""
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status

from auth.security import identity_from_token
from core.logger import logger


router = APIRouter(tags=["websocket"])


async def _reject(websocket: WebSocket, reason: str):
    """Accept, then close with 1008. The socket is never registered."""
    logger.info(f"Realtime handshake rejected: {reason}")
    await websocket.accept()
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


@router.websocket("/ws")
async def websocket_events(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    identity = identity_from_token(token)
    if identity is None:
        await _reject(websocket, "Invalid or missing token")
        return
    if not (identity.is_user or identity.is_admin):
        await _reject(websocket, "Email domain not allowed")
        return

    manager = websocket.app.state.realtime
    connection = await manager.connect(websocket, identity)

    try:
        # Keep connection alive, handle incoming messages (heartbeat/pings)
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"Realtime connection {connection.id} errored: {e}")
    finally:
        await manager.disconnect(connection)
