from pydantic import BaseModel, Field
from typing import List, Optional, Literal

from fleettrack.schemas.geo import GeoSample

TripState = Literal["PENDING", "ACTIVE", "COMPLETED", "CANCELLED"]
SyncSpeed = Literal["FAST", "MEDIUM", "SLOW"]
TripType = Literal["LOCAL_MOVE", "WAREHOUSE_SHIPMENT", "AIRPORT_CARGO", "LONG_HAUL", "URGENT_DELIVERY"]


class TripCreate(BaseModel):
    vehicle_id: str
    origin_label: str = ""
    destination_label: str = ""
    trip_type: TripType = "LOCAL_MOVE"
    description: str = ""


class TripTransition(BaseModel):
    # best-effort position captured by the driver device; absent when positioning failed
    sample: Optional[GeoSample] = None


class Trip(BaseModel):
    id: str
    vehicle_id: str
    origin_label: str = ""
    destination_label: str = ""
    trip_type: TripType = "LOCAL_MOVE"
    description: str = ""
    state: TripState = "PENDING"
    start_sample: Optional[GeoSample] = None
    end_sample: Optional[GeoSample] = None
    route: List[GeoSample] = Field(default_factory=list)
    distance_km: Optional[float] = None
    avg_speed_kmh: Optional[float] = None
    distance_estimated: bool = False
    created_at_ms: int
    started_at_ms: Optional[int] = None
    ended_at_ms: Optional[int] = None


class TripSummary(BaseModel):
    id: str
    vehicle_id: str
    origin_label: str
    destination_label: str
    trip_type: TripType
    state: TripState
    samples: int
    distance_km: Optional[float] = None
    avg_speed_kmh: Optional[float] = None
    created_at_ms: int
    started_at_ms: Optional[int] = None
    ended_at_ms: Optional[int] = None


class IngestResult(BaseModel):
    vehicle_id: str
    trip_id: Optional[str] = None
    appended: bool
    reason: str


class FleetSettings(BaseModel):
    sync_speed: SyncSpeed = "MEDIUM"
    updated_at_ms: int = 0


class FleetSettingsPatch(BaseModel):
    sync_speed: SyncSpeed


class ReplayFrame(BaseModel):
    index: int
    sample: Optional[GeoSample] = None
    progress_pct: float
    distance_so_far_km: float


class ReplayOut(BaseModel):
    trip_id: str
    total_samples: int
    distance_km: Optional[float] = None
    frames: List[ReplayFrame]


class TripTracking(BaseModel):
    # public view of one trip with the live position of its vehicle
    trip_id: str
    state: TripState
    trip_type: TripType
    origin_label: str
    destination_label: str
    description: str
    vehicle_id: str
    vehicle_name: str = ""
    vehicle_no: str = ""
    effective_status: Optional[str] = None
    last_known_location: Optional[GeoSample] = None
    samples: int
    started_at_ms: Optional[int] = None
    ended_at_ms: Optional[int] = None
    distance_km: Optional[float] = None
