import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)

VEHICLES_ROOM = "vehicles"


def trip_room(trip_id: str) -> str:
    return f"trip:{trip_id}"


class WSManager:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, room: str, ws: WebSocket):
        await ws.accept()
        self.rooms.setdefault(room, set()).add(ws)

    def disconnect(self, room: str, ws: WebSocket):
        if room in self.rooms:
            self.rooms[room].discard(ws)
            if not self.rooms[room]:
                self.rooms.pop(room, None)

    def listeners(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def broadcast(self, room: str, message: dict):
        for ws in list(self.rooms.get(room, set())):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.info(f"dropping websocket from {room}: {e}")
                self.disconnect(room, ws)

manager = WSManager()
