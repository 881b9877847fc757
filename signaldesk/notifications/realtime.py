"""Realtime notification push over WebSocket"""
import logging
from collections import defaultdict
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections per user"""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = defaultdict(list)

    async def connect(self, user_id: str, websocket: WebSocket, unread: int = 0):
        await websocket.accept()
        self.active_connections[user_id].append(websocket)
        logger.info(f"Notification client connected for user {user_id}. Total: {self.connection_count()}")

        await websocket.send_json({
            "type": "connected",
            "data": {"unread_count": unread},
        })

    def disconnect(self, user_id: str, websocket: WebSocket):
        connections = self.active_connections.get(user_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(user_id, None)
        logger.info(f"Notification client disconnected for user {user_id}. Total: {self.connection_count()}")

    def connection_count(self) -> int:
        return sum(len(c) for c in self.active_connections.values())

    async def send_to_user(self, user_id: str, message: dict):
        """Send a message to every open socket of one user"""
        stale = []
        for connection in list(self.active_connections.get(user_id, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Push error for user {user_id}: {e}")
                stale.append(connection)

        for connection in stale:
            self.disconnect(user_id, connection)


# Global connection manager
connection_manager = ConnectionManager()
