"""Per-user WebSocket notifier."""
import logging
from typing import Any, Dict

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


class RealtimeNotifier:
    """Maps a user id to one open WebSocket.

    The last connection to register for a user replaces any earlier one. Sends
    are best effort: no connection, a closed connection or a failed send all
    drop the event. Nothing is queued or retried.
    """

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}

    def register(self, user_id: str, websocket: WebSocket) -> None:
        previous = self.connections.get(user_id)
        if previous is not None and previous is not websocket:
            logger.info("[REALTIME] Replacing connection for user %s", user_id)
        self.connections[user_id] = websocket
        logger.info("[REALTIME] Registered user %s (%d online)", user_id, len(self.connections))

    def unregister(self, user_id: str, websocket: WebSocket) -> None:
        """Remove the entry only if it still points at this socket."""
        if self.connections.get(user_id) is websocket:
            del self.connections[user_id]
            logger.info("[REALTIME] Unregistered user %s", user_id)

    def is_connected(self, user_id: str) -> bool:
        websocket = self.connections.get(user_id)
        return websocket is not None and websocket.client_state == WebSocketState.CONNECTED

    async def notify(self, user_id: str, event: dict[str, Any]) -> bool:
        websocket = self.connections.get(user_id)
        if websocket is None:
            logger.debug("[REALTIME] No connection for user %s, dropping %s", user_id, event.get("type"))
            return False
        if websocket.client_state != WebSocketState.CONNECTED:
            logger.debug("[REALTIME] Connection for user %s not open, dropping %s", user_id, event.get("type"))
            self.unregister(user_id, websocket)
            return False
        try:
            await websocket.send_json(event)
        except (RuntimeError, ConnectionError, WebSocketDisconnect) as e:
            # peer gone before its close frame arrived: send raises while still CONNECTED
            logger.warning("[REALTIME] Connection closed for user %s: %r", user_id, e)
            self.unregister(user_id, websocket)
            return False
        except Exception as e:
            logger.error("[REALTIME] Failed to send %s to user %s: %s", event.get("type"), user_id, e)
            self.unregister(user_id, websocket)
            return False
        logger.debug("[REALTIME] Sent %s to user %s", event.get("type"), user_id)
        return True
