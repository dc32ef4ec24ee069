"""Great-circle distance and route metrics.

All functions are pure; the trip state machine uses them for final metrics
and the replay engine for "distance so far" feedback.
"""

from __future__ import annotations

import math
from typing import List, Sequence

from fleettrack.core.config import ASSUMED_AVERAGE_SPEED_KMH
from fleettrack.schemas.geo import GeoSample

EARTH_RADIUS_KM = 6371.0
MS_PER_HOUR = 3_600_000


def haversine_km(a: GeoSample, b: GeoSample) -> float:
    """Great-circle distance between two samples in kilometres (altitude ignored)."""

    if a.lat == b.lat and a.lng == b.lng:
        return 0.0

    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # rounding can push h marginally outside [0, 1]
    h = min(1.0, max(0.0, h))
    return 2.0 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def haversine_m(a: GeoSample, b: GeoSample) -> float:
    return haversine_km(a, b) * 1000.0


def route_distance_km(route: Sequence[GeoSample]) -> float:
    """Sum of consecutive-pair distances; 0 for fewer than two samples."""

    if len(route) < 2:
        return 0.0
    return sum(haversine_km(route[i - 1], route[i]) for i in range(1, len(route)))


def cumulative_distances_km(route: Sequence[GeoSample]) -> List[float]:
    """Running distance at each index; the first entry is always 0."""

    out: List[float] = []
    total = 0.0
    for i, sample in enumerate(route):
        if i > 0:
            total += haversine_km(route[i - 1], sample)
        out.append(total)
    return out


def average_speed_kmh(distance_km: float, started_at_ms: int, ended_at_ms: int) -> float:
    """Distance over duration; non-positive durations yield 0."""

    duration_ms = ended_at_ms - started_at_ms
    if duration_ms <= 0:
        return 0.0
    return distance_km / (duration_ms / MS_PER_HOUR)


def estimate_distance_km(started_at_ms: int, ended_at_ms: int) -> float:
    """Duration times an assumed fleet speed. Callers must flag the result as estimated."""

    duration_ms = ended_at_ms - started_at_ms
    if duration_ms <= 0:
        return 0.0
    return ASSUMED_AVERAGE_SPEED_KMH * (duration_ms / MS_PER_HOUR)
