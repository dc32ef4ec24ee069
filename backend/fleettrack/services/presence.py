"""Heartbeat-based presence. ``effective_status`` is derived on read and never stored."""

import logging
import time
from typing import Iterable, List, Optional

from fleettrack.core.config import HEARTBEAT_TIMEOUT_MS
from fleettrack.db.store import VEHICLES, DocumentStore
from fleettrack.errors import NotFoundError
from fleettrack.schemas.vehicle import EffectiveStatus, Vehicle, VehicleOut

logger = logging.getLogger(__name__)

_INTENT_TO_EFFECTIVE = {
    "IDLE": "ONLINE",
    "ON_TRIP": "ON_TRIP",
    "OFFLINE": "OFFLINE",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def effective_status(vehicle: Vehicle, now: int, timeout_ms: int = HEARTBEAT_TIMEOUT_MS) -> EffectiveStatus:
    if not vehicle.last_heartbeat_ms:
        return "OFFLINE"
    if now - vehicle.last_heartbeat_ms > timeout_ms:
        return "OFFLINE"
    return _INTENT_TO_EFFECTIVE[vehicle.intended_status]


def with_presence(vehicle: Vehicle, now: int) -> VehicleOut:
    return VehicleOut(**vehicle.model_dump(), effective_status=effective_status(vehicle, now))


def presence_snapshot(vehicles: Iterable[Vehicle], now: int) -> List[VehicleOut]:
    return [with_presence(v, now) for v in vehicles]


async def record_heartbeat(
    store: DocumentStore, vehicle_id: str, now: int, reported_ms: Optional[int] = None
) -> Vehicle:
    """Refresh the liveness timestamp with the receiving side's clock ``now``.

    ``reported_ms`` is the device's own clock; it is only logged, since staleness
    is always judged against server time.
    """
    current = await store.get(VEHICLES, vehicle_id)
    if current is None or current.get("decommissioned"):
        raise NotFoundError(VEHICLES, vehicle_id)
    if reported_ms is not None and abs(reported_ms - now) > HEARTBEAT_TIMEOUT_MS:
        logger.warning(f"heartbeat {vehicle_id}: device clock off by {(reported_ms - now) // 1000}s")
    # heartbeats can race; never move the timestamp backwards
    if now <= current.get("last_heartbeat_ms", 0):
        return Vehicle.model_validate(current)
    updated = await store.update(VEHICLES, vehicle_id, {"last_heartbeat_ms": now})
    logger.debug(f"heartbeat {vehicle_id} at {now}")
    return Vehicle.model_validate(updated)
