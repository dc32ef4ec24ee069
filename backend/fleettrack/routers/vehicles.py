from fastapi import APIRouter, Depends, HTTPException
from typing import List

from fleettrack.db.store import VEHICLES, DocumentStore
from fleettrack.deps import get_store
from fleettrack.schemas.vehicle import Vehicle, VehicleCreate, VehicleOut, VehiclePerformance
from fleettrack.services.performance import performance_summary
from fleettrack.services.presence import now_ms, presence_snapshot, with_presence
from fleettrack.services.trips import TripService

router = APIRouter()


async def load_vehicle(store: DocumentStore, vehicle_id: str) -> Vehicle:
    doc = await store.get(VEHICLES, vehicle_id)
    if doc is None or doc.get("decommissioned"):
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return Vehicle.model_validate(doc)


@router.post("/vehicles", response_model=VehicleOut)
async def register_vehicle(body: VehicleCreate, store: DocumentStore = Depends(get_store)):
    vehicle_id = body.vehicle_id.strip()
    existing = await store.get(VEHICLES, vehicle_id)
    if existing and not existing.get("decommissioned"):
        raise HTTPException(status_code=409, detail="vehicle_id already registered")

    now = now_ms()
    vehicle = Vehicle(id=vehicle_id, name=body.name, vehicle_no=body.vehicle_no, created_at_ms=now)
    await store.put(VEHICLES, vehicle_id, vehicle.model_dump())
    return with_presence(vehicle, now)


@router.get("/vehicles", response_model=List[VehicleOut])
async def list_vehicles(store: DocumentStore = Depends(get_store)):
    docs = await store.find(VEHICLES, {"decommissioned": False})
    return presence_snapshot([Vehicle.model_validate(d) for d in docs], now_ms())


@router.get("/vehicles/{vehicle_id}", response_model=VehicleOut)
async def get_vehicle(vehicle_id: str, store: DocumentStore = Depends(get_store)):
    return with_presence(await load_vehicle(store, vehicle_id), now_ms())


@router.delete("/vehicles/{vehicle_id}")
async def decommission_vehicle(vehicle_id: str, store: DocumentStore = Depends(get_store)):
    vehicle = await load_vehicle(store, vehicle_id)
    if vehicle.assigned_trip_id:
        raise HTTPException(status_code=409, detail=f"Vehicle is on trip {vehicle.assigned_trip_id}")

    # soft delete: routes keep referencing the vehicle
    await store.update(VEHICLES, vehicle_id, {"decommissioned": True, "intended_status": "OFFLINE"})
    return {"ok": True}


@router.get("/vehicles/{vehicle_id}/performance", response_model=VehiclePerformance)
async def vehicle_performance(vehicle_id: str, store: DocumentStore = Depends(get_store)):
    await load_vehicle(store, vehicle_id)
    trips = await TripService(store).list_trips(vehicle_id=vehicle_id)
    return performance_summary(vehicle_id, trips)
