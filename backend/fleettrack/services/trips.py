"""Trip lifecycle: PENDING -> ACTIVE -> COMPLETED | CANCELLED, and PENDING -> CANCELLED."""

import logging
from typing import Callable, Dict, List, Optional, Set
from uuid import uuid4

from fleettrack.core import geo
from fleettrack.db.store import TRIPS, VEHICLES, DocumentStore
from fleettrack.errors import InvalidTransitionError, NotFoundError, VehicleBusyError
from fleettrack.schemas.geo import GeoSample, route_to_docs
from fleettrack.schemas.trip import Trip, TripState, TripTracking, TripType
from fleettrack.schemas.vehicle import Vehicle
from fleettrack.services.presence import effective_status, now_ms

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[str, Set[str]] = {
    "PENDING": {"ACTIVE", "CANCELLED"},
    "ACTIVE": {"COMPLETED", "CANCELLED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}


def can_transition(current: TripState, target: TripState) -> bool:
    return target in TRANSITIONS.get(current, set())


def compute_metrics(trip: Trip) -> dict:
    """Final distance/speed for a trip whose route and timestamps are set.

    Real route data always wins; the duration-based estimate is used only when
    no sample at all was recorded, and is flagged as such.
    """
    if trip.started_at_ms is None or trip.ended_at_ms is None:
        raise ValueError(f"trip {trip.id} has no start/end time")

    if trip.route:
        distance = geo.route_distance_km(trip.route)
        estimated = False
    else:
        distance = geo.estimate_distance_km(trip.started_at_ms, trip.ended_at_ms)
        estimated = True

    return {
        "distance_km": distance,
        "avg_speed_kmh": geo.average_speed_kmh(distance, trip.started_at_ms, trip.ended_at_ms),
        "distance_estimated": estimated,
    }


class TripService:
    def __init__(self, store: DocumentStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    async def get_trip(self, trip_id: str) -> Trip:
        doc = await self.store.get(TRIPS, trip_id)
        if doc is None:
            raise NotFoundError(TRIPS, trip_id)
        return Trip.model_validate(doc)

    async def list_trips(self, vehicle_id: Optional[str] = None, state: Optional[str] = None) -> List[Trip]:
        filter = {}
        if vehicle_id:
            filter["vehicle_id"] = vehicle_id
        if state:
            filter["state"] = state
        docs = await self.store.find(TRIPS, filter)
        return [Trip.model_validate(d) for d in docs]

    async def tracking(self, trip_id: str, now: Optional[int] = None) -> TripTracking:
        trip = await self.get_trip(trip_id)
        doc = await self.store.get(VEHICLES, trip.vehicle_id)
        vehicle = Vehicle.model_validate(doc) if doc else None
        return TripTracking(
            trip_id=trip.id,
            state=trip.state,
            trip_type=trip.trip_type,
            origin_label=trip.origin_label,
            destination_label=trip.destination_label,
            description=trip.description,
            vehicle_id=trip.vehicle_id,
            vehicle_name=vehicle.name if vehicle else "",
            vehicle_no=vehicle.vehicle_no if vehicle else "",
            effective_status=effective_status(vehicle, self.clock() if now is None else now) if vehicle else None,
            last_known_location=vehicle.last_known_location if vehicle else None,
            samples=len(trip.route),
            started_at_ms=trip.started_at_ms,
            ended_at_ms=trip.ended_at_ms,
            distance_km=trip.distance_km,
        )

    async def dispatch(
        self,
        vehicle_id: str,
        origin_label: str = "",
        destination_label: str = "",
        trip_type: TripType = "LOCAL_MOVE",
        description: str = "",
    ) -> Trip:
        vehicle = await self.store.get(VEHICLES, vehicle_id)
        if vehicle is None or vehicle.get("decommissioned"):
            raise NotFoundError(VEHICLES, vehicle_id)

        trip = Trip(
            id=f"tr-{uuid4().hex[:10]}",
            vehicle_id=vehicle_id,
            origin_label=origin_label,
            destination_label=destination_label,
            trip_type=trip_type,
            description=description,
            created_at_ms=self.clock(),
        )
        await self.store.put(TRIPS, trip.id, trip.model_dump())
        logger.info(f"dispatched trip {trip.id} to vehicle {vehicle_id}")
        return trip

    async def start(self, trip_id: str, start_sample: Optional[GeoSample] = None) -> Trip:
        trip = await self._checked(trip_id, "ACTIVE")

        vehicle = await self.store.get(VEHICLES, trip.vehicle_id)
        if vehicle is None or vehicle.get("decommissioned"):
            raise NotFoundError(VEHICLES, trip.vehicle_id)
        busy_with = vehicle.get("assigned_trip_id")
        if busy_with and busy_with != trip_id:
            other = await self.store.get(TRIPS, busy_with)
            if other and other.get("state") == "ACTIVE":
                raise VehicleBusyError(trip.vehicle_id, busy_with)

        if start_sample is None:
            logger.warning(f"trip {trip_id} started without a start position")

        doc = await self._transition(
            trip,
            "ACTIVE",
            {
                "started_at_ms": self.clock(),
                "start_sample": start_sample.model_dump() if start_sample else None,
                "route": route_to_docs([start_sample]) if start_sample else [],
            },
        )
        await self.store.update(
            VEHICLES,
            trip.vehicle_id,
            {"intended_status": "ON_TRIP", "assigned_trip_id": trip_id},
        )
        logger.info(f"trip {trip_id} ACTIVE")
        return Trip.model_validate(doc)

    async def complete(self, trip_id: str, end_sample: Optional[GeoSample] = None) -> Trip:
        trip = await self._checked(trip_id, "COMPLETED")

        # once COMPLETED is stored no sample can be appended, so the route read back here is final
        doc = await self._transition(trip, "COMPLETED", {"ended_at_ms": self.clock()})
        closed = Trip.model_validate(doc)

        route = list(closed.route)
        if end_sample is not None:
            if route and end_sample.captured_at_ms < route[-1].captured_at_ms:
                logger.warning(f"trip {trip_id}: end sample older than route tail, not appended")
            else:
                route.append(end_sample)
        else:
            logger.warning(f"trip {trip_id} completed without an end position")

        update = {
            "route": route_to_docs(route),
            "end_sample": end_sample.model_dump() if end_sample else None,
        }
        try:
            update.update(compute_metrics(closed.model_copy(update={"route": route})))
        except Exception:
            # closure must not be blocked by bad metric input
            logger.exception(f"metrics failed for trip {trip_id}; completing without them")

        doc = await self.store.update(TRIPS, trip_id, update)
        await self._release_vehicle(trip)
        logger.info(f"trip {trip_id} COMPLETED distance_km={doc.get('distance_km')}")
        return Trip.model_validate(doc)

    async def cancel(self, trip_id: str) -> Trip:
        trip = await self._checked(trip_id, "CANCELLED")
        doc = await self._transition(trip, "CANCELLED", {"ended_at_ms": self.clock()})
        if trip.state == "ACTIVE":
            await self._release_vehicle(trip)
        logger.info(f"trip {trip_id} CANCELLED from {trip.state}")
        return Trip.model_validate(doc)

    async def _checked(self, trip_id: str, target: TripState) -> Trip:
        trip = await self.get_trip(trip_id)
        if not can_transition(trip.state, target):
            raise InvalidTransitionError(trip_id, trip.state, target)
        return trip

    async def _transition(self, trip: Trip, target: TripState, fields: dict) -> dict:
        doc = await self.store.update(TRIPS, trip.id, {**fields, "state": target}, where={"state": trip.state})
        if doc is None:
            current = (await self.get_trip(trip.id)).state
            raise InvalidTransitionError(trip.id, current, target, "state changed concurrently")
        return doc

    async def _release_vehicle(self, trip: Trip):
        vehicle = await self.store.get(VEHICLES, trip.vehicle_id)
        if vehicle is None:
            logger.warning(f"trip {trip.id}: vehicle {trip.vehicle_id} is gone")
            return
        if vehicle.get("assigned_trip_id") != trip.id:
            return
        update = {"assigned_trip_id": None}
        if vehicle.get("intended_status") == "ON_TRIP":
            update["intended_status"] = "IDLE"
        await self.store.update(VEHICLES, trip.vehicle_id, update)
