"""WebSocket routes."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from voxelhub.infra.realtime.notifier import RealtimeNotifier
from voxelhub.infra.security.jwt import decode_token

logger = logging.getLogger(__name__)

router = APIRouter()


def get_user_from_token(token: Optional[str]) -> Optional[str]:
    """Extract the user id from an access token."""
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        logger.warning("[REALTIME] Token decode failed - invalid token or expired")
        return None
    if payload.get("type") != "access":
        logger.warning("[REALTIME] Token type mismatch: expected 'access', got %r", payload.get("type"))
        return None
    return payload.get("sub")


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    """Realtime channel.

    The client registers with {"type": "register", "userId": ...}; the user id
    must match the token. Text "ping" is answered with "pong".
    """
    notifier: RealtimeNotifier = websocket.app.state.notifier
    await websocket.accept()

    token_user_id = get_user_from_token(token or websocket.query_params.get("token"))
    if not token_user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    registered: Optional[str] = None
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
                continue
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("[REALTIME] Ignoring non-JSON message from %s", token_user_id)
                continue
            if not isinstance(message, dict) or message.get("type") != "register":
                continue
            if message.get("userId") != token_user_id:
                logger.warning("[REALTIME] Register for %s refused on token of %s", message.get("userId"), token_user_id)
                await websocket.send_json({"type": "error", "message": "User id does not match token"})
                continue
            notifier.register(token_user_id, websocket)
            registered = token_user_id
            await websocket.send_json({"type": "registered", "userId": token_user_id})
    except WebSocketDisconnect:
        pass
    except (RuntimeError, ConnectionError) as e:
        logger.warning("[REALTIME] Connection error: %s", e)
    finally:
        if registered:
            notifier.unregister(registered, websocket)
