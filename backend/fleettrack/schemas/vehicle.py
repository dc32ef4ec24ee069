from pydantic import BaseModel, Field
from typing import Optional, Literal

from fleettrack.schemas.geo import GeoSample

IntendedStatus = Literal["IDLE", "ON_TRIP", "OFFLINE"]
EffectiveStatus = Literal["ONLINE", "OFFLINE", "ON_TRIP"]


class VehicleCreate(BaseModel):
    vehicle_id: str = Field(min_length=1, max_length=64)
    name: str = ""
    vehicle_no: str = ""


class Vehicle(BaseModel):
    id: str
    name: str = ""
    vehicle_no: str = ""
    assigned_trip_id: Optional[str] = None
    last_known_location: Optional[GeoSample] = None
    last_heartbeat_ms: int = 0
    intended_status: IntendedStatus = "IDLE"
    decommissioned: bool = False
    created_at_ms: int = 0


class VehicleOut(Vehicle):
    # derived at read time, never stored
    effective_status: EffectiveStatus


class VehiclePerformance(BaseModel):
    vehicle_id: str
    total_trips: int
    completed_trips: int
    completion_rate_pct: int
    total_distance_km: float
    avg_speed_kmh: Optional[float] = None
