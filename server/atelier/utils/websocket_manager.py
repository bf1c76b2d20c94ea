import threading
from typing import Dict, List, Tuple

from fastapi import WebSocket


class ConnectionManager:
    """Open conversation sockets, keyed by (conversation_id, user_id)."""

    def __init__(self) -> None:
        self.active_connections: Dict[Tuple[str, str], List[WebSocket]] = {}
        self._lock = threading.Lock()

    async def connect(self, conversation_id: str, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self.active_connections.setdefault((conversation_id, user_id), []).append(websocket)

    def disconnect(self, conversation_id: str, user_id: str, websocket: WebSocket) -> None:
        key = (conversation_id, user_id)
        with self._lock:
            if key in self.active_connections:
                try:
                    self.active_connections[key].remove(websocket)
                except ValueError:
                    pass
                if not self.active_connections[key]:
                    del self.active_connections[key]

    def is_connected(self, conversation_id: str, user_id: str) -> bool:
        with self._lock:
            return bool(self.active_connections.get((conversation_id, user_id)))


manager = ConnectionManager()
