import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from fleettrack.db.store import TRIPS, VEHICLES
from fleettrack.deps import get_store
from fleettrack.errors import NotReplayableError
from fleettrack.realtime.feed import trip_message, vehicle_message
from fleettrack.realtime.manager import VEHICLES_ROOM, manager, trip_room
from fleettrack.schemas.trip import Trip
from fleettrack.services.presence import now_ms
from fleettrack.services.replay import ReplayEngine, ReplayPlayer
from fleettrack.services.trips import TripService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/vehicles")
async def vehicles_ws(ws: WebSocket):
    await manager.connect(VEHICLES_ROOM, ws)
    now = now_ms()
    for doc in await get_store().find(VEHICLES, {"decommissioned": False}):
        await ws.send_json(vehicle_message(doc, now))
    try:
        while True:
            # keep connection alive; client can send pings
            await ws.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(VEHICLES_ROOM, ws)


@router.websocket("/ws/trips/{trip_id}")
async def trip_ws(ws: WebSocket, trip_id: str):
    room = trip_room(trip_id)
    await manager.connect(room, ws)
    store = get_store()
    last = await store.get(TRIPS, trip_id)
    if last:
        tracking = await TripService(store).tracking(trip_id)
        await ws.send_json({"type": "tracking", "tracking": tracking.model_dump()})
        await ws.send_json(trip_message(last))
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(room, ws)


@router.websocket("/ws/replay/{trip_id}")
async def replay_ws(ws: WebSocket, trip_id: str):
    """Server-driven playback.

    Client messages: {"cmd": "play"|"pause"|"seek"|"step"|"speed", "value": int}.
    Every cursor move is pushed back as a frame.
    """
    await ws.accept()
    doc = await get_store().get(TRIPS, trip_id)
    if doc is None:
        await ws.close(code=4404, reason="Trip not found")
        return
    try:
        engine = ReplayEngine.for_trip(Trip.model_validate(doc))
    except NotReplayableError as e:
        await ws.close(code=4409, reason=str(e))
        return

    async def push(frame):
        await ws.send_json({"type": "frame", "frame": frame.model_dump(), "speed": engine.speed_multiplier})

    player = ReplayPlayer(engine, push)
    await ws.send_json({"type": "ready", "trip_id": trip_id, "total_samples": len(engine.route)})
    await push(engine.frame())
    try:
        while True:
            try:
                msg = json.loads(await ws.receive_text())
                cmd = msg.get("cmd")
                value = msg.get("value")
                if cmd == "play":
                    await player.play()
                elif cmd == "pause":
                    await player.pause()
                elif cmd == "seek":
                    await player.seek(int(value))
                elif cmd == "step":
                    await player.step(int(value))
                elif cmd == "speed":
                    await player.set_speed(int(value))
                else:
                    await ws.send_json({"type": "error", "detail": f"unknown cmd {cmd!r}"})
            except (TypeError, ValueError, AttributeError) as e:
                # ValueError covers json.JSONDecodeError
                await ws.send_json({"type": "error", "detail": f"bad command: {e}"})
    except WebSocketDisconnect:
        logger.debug(f"replay viewer left trip {trip_id}")
    finally:
        try:
            await player.stop()
        except Exception:
            logger.exception(f"replay player for trip {trip_id} failed")
