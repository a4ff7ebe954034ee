"""
WebSocket push channel for CaseTrack events.

Clients connect to /ws?user_id=<id>. Events are JSON objects of the form
{"type": <event>, "data": {...}, "timestamp": <ISO 8601>}:

- movement_received      sent to the receiving custodian
- movement_logged        broadcast
- movement_acknowledged  broadcast
- deadline_added         broadcast
- file_created           broadcast

Delivery is best-effort. A failed send drops that connection and never
fails the request that produced the event.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class EventType:
    MOVEMENT_RECEIVED = "movement_received"
    MOVEMENT_LOGGED = "movement_logged"
    MOVEMENT_ACKNOWLEDGED = "movement_acknowledged"
    DEADLINE_ADDED = "deadline_added"
    FILE_CREATED = "file_created"


def build_event(event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ConnectionManager:
    """Open WebSocket connections grouped by user."""

    def __init__(self):
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
        logger.info(f"WebSocket connected: user={user_id}")

    async def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._connections[user_id]
        logger.info(f"WebSocket disconnected: user={user_id}")

    @property
    def connection_count(self) -> int:
        return sum(len(s) for s in self._connections.values())

    async def _send(self, targets: List[tuple], message: Dict[str, Any]) -> int:
        delivered = 0
        for user_id, websocket in targets:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping WebSocket for {user_id}: {e}")
                await self.disconnect(websocket, user_id)
        return delivered

    async def send_to_user(self, user_id: str, event_type: str, data: Dict[str, Any]) -> int:
        """Push an event to every connection of one user. Returns deliveries."""
        async with self._lock:
            targets = [(user_id, ws) for ws in self._connections.get(user_id, ())]
        return await self._send(targets, build_event(event_type, data))

    async def broadcast(self, event_type: str, data: Dict[str, Any]) -> int:
        """Push an event to every open connection. Returns deliveries."""
        async with self._lock:
            targets = [
                (user_id, ws)
                for user_id, sockets in self._connections.items()
                for ws in sockets
            ]
        return await self._send(targets, build_event(event_type, data))


# Global connection manager
connection_manager = ConnectionManager()
