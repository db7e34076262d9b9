import asyncio
import json
import uuid
from typing import Dict, Iterable

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from ..core.log_config import logger


class WebsocketManager:
    """
    Owns the live WebSocket objects of this process, keyed by an opaque
    connection id, and delivers JSON events to them. Delivery is best
    effort: a socket that is closing or already gone is skipped.
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """Accepts a new WebSocket connection and returns its connection id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        logger.info(f"Connection {connection_id} opened ({len(self.active_connections)} live).")
        return connection_id

    def disconnect(self, connection_id: str):
        if self.active_connections.pop(connection_id, None) is not None:
            logger.info(f"Connection {connection_id} closed ({len(self.active_connections)} live).")

    async def close(self):
        """Closes every live socket. Called on shutdown."""
        for connection_id, websocket in list(self.active_connections.items()):
            if websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except RuntimeError:
                    pass
            self.disconnect(connection_id)
        logger.info("WebsocketManager resources closed.")

    async def send_personal_message(self, connection_id: str, message: dict) -> bool:
        """Sends one event to one connection. Returns False if it could not be delivered."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None or websocket.application_state != WebSocketState.CONNECTED:
            return False
        try:
            await websocket.send_text(json.dumps(message, default=str))
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Failed to send to connection {connection_id}: {e}")
            return False

    async def broadcast(self, connection_ids: Iterable[str], message: dict) -> int:
        """Sends one event to many connections. Returns how many deliveries succeeded."""
        tasks = [
            self.send_personal_message(connection_id, message)
            for connection_id in set(connection_ids)
        ]
        if not tasks:
            return 0
        results = await asyncio.gather(*tasks)
        return sum(results)
