from typing import Iterable

from fleettrack.schemas.trip import Trip
from fleettrack.schemas.vehicle import VehiclePerformance


def performance_summary(vehicle_id: str, trips: Iterable[Trip]) -> VehiclePerformance:
    """Per-vehicle totals over its trips. Only completed trips contribute distance and speed."""

    own = [t for t in trips if t.vehicle_id == vehicle_id]
    completed = [t for t in own if t.state == "COMPLETED"]

    total_km = sum(t.distance_km or 0.0 for t in completed)
    speeds = [t.avg_speed_kmh for t in completed if t.avg_speed_kmh is not None]

    return VehiclePerformance(
        vehicle_id=vehicle_id,
        total_trips=len(own),
        completed_trips=len(completed),
        completion_rate_pct=round(len(completed) / len(own) * 100) if own else 0,
        total_distance_km=total_km,
        avg_speed_kmh=sum(speeds) / len(speeds) if speeds else None,
    )
