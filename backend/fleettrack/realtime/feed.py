"""Pushes store changes and heartbeat lapses to websocket rooms."""

import asyncio
import logging
from typing import Callable, Dict, List

from fleettrack.core import config
from fleettrack.db.store import TRIPS, VEHICLES, DocumentStore
from fleettrack.realtime.manager import VEHICLES_ROOM, WSManager, trip_room
from fleettrack.schemas.trip import Trip
from fleettrack.schemas.vehicle import Vehicle
from fleettrack.services.presence import now_ms, with_presence

logger = logging.getLogger(__name__)


def vehicle_message(doc: dict, now: int) -> dict:
    out = with_presence(Vehicle.model_validate(doc), now)
    return {"type": "vehicle", "vehicle": out.model_dump()}


def trip_message(doc: dict) -> dict:
    trip = Trip.model_validate(doc)
    return {
        "type": "trip",
        "trip_id": trip.id,
        "state": trip.state,
        "samples": len(trip.route),
        "last_sample": trip.route[-1].model_dump() if trip.route else None,
        "distance_km": trip.distance_km,
        "avg_speed_kmh": trip.avg_speed_kmh,
    }


def bind_store(store: DocumentStore, ws: WSManager, clock: Callable[[], int] = now_ms) -> List[Callable]:
    """Subscribe the websocket rooms to store writes. Returns the unsubscribe functions."""

    async def on_vehicle(collection, doc_id, doc):
        if ws.listeners(VEHICLES_ROOM):
            await ws.broadcast(VEHICLES_ROOM, vehicle_message(doc, clock()))

    async def on_trip(collection, doc_id, doc):
        room = trip_room(doc_id)
        if ws.listeners(room):
            await ws.broadcast(room, trip_message(doc))

    return [store.subscribe(VEHICLES, on_vehicle), store.subscribe(TRIPS, on_trip)]


class PresenceSweeper:
    """Heartbeat lapses change effective status without any write; announce those changes."""

    def __init__(
        self,
        store: DocumentStore,
        ws: WSManager,
        interval_s: float = config.PRESENCE_SWEEP_S,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.ws = ws
        self.interval_s = interval_s
        self.clock = clock
        self._seen: Dict[str, str] = {}
        self._task = None

    async def sweep_once(self) -> List[str]:
        now = self.clock()
        changed = []
        for doc in await self.store.find(VEHICLES, {"decommissioned": False}):
            out = with_presence(Vehicle.model_validate(doc), now)
            if self._seen.get(out.id) != out.effective_status:
                self._seen[out.id] = out.effective_status
                changed.append(out.id)
                await self.ws.broadcast(VEHICLES_ROOM, {"type": "vehicle", "vehicle": out.model_dump()})
        return changed

    async def run(self):
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("presence sweep failed")
            await asyncio.sleep(self.interval_s)

    def start(self):
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
