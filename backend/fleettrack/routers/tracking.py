from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from fleettrack.db.store import DocumentStore
from fleettrack.deps import get_store
from fleettrack.errors import NotFoundError
from fleettrack.schemas.geo import GeoSample
from fleettrack.schemas.trip import IngestResult
from fleettrack.services.accumulator import RouteAccumulator
from fleettrack.services.presence import now_ms, record_heartbeat

router = APIRouter()


class HeartbeatIn(BaseModel):
    at_ms: Optional[int] = None


@router.post("/vehicles/{vehicle_id}/location", response_model=IngestResult)
async def ingest_location(vehicle_id: str, sample: GeoSample, store: DocumentStore = Depends(get_store)):
    try:
        return await RouteAccumulator.from_config(store).ingest(vehicle_id, sample)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Vehicle not found")


@router.post("/vehicles/{vehicle_id}/heartbeat")
async def heartbeat(vehicle_id: str, body: Optional[HeartbeatIn] = None, store: DocumentStore = Depends(get_store)):
    # device clocks drift; liveness is judged on the server clock only
    try:
        vehicle = await record_heartbeat(store, vehicle_id, now_ms(), body.at_ms if body else None)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return {"ok": True, "last_heartbeat_ms": vehicle.last_heartbeat_ms}
