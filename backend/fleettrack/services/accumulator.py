"""Applies accepted samples to a vehicle's last-known position and its active trip's route."""

import bisect
import logging
from typing import Literal

from fleettrack.core import config
from fleettrack.db.store import TRIPS, VEHICLES, DocumentStore
from fleettrack.errors import NotFoundError
from fleettrack.schemas.geo import GeoSample, route_from_docs, route_to_docs
from fleettrack.schemas.trip import IngestResult

logger = logging.getLogger(__name__)

OrderingPolicy = Literal["reject", "resort"]


class RouteAccumulator:
    def __init__(self, store: DocumentStore, ordering: OrderingPolicy = "reject"):
        if ordering not in ("reject", "resort"):
            raise ValueError(f"unknown ordering policy {ordering!r}")
        self.store = store
        self.ordering = ordering

    @classmethod
    def from_config(cls, store: DocumentStore) -> "RouteAccumulator":
        return cls(store, ordering=config.ORDERING_POLICY)

    async def ingest(self, vehicle_id: str, sample: GeoSample) -> IngestResult:
        vehicle = await self.store.get(VEHICLES, vehicle_id)
        if vehicle is None or vehicle.get("decommissioned"):
            raise NotFoundError(VEHICLES, vehicle_id)

        await self._update_last_known(vehicle_id, vehicle, sample)

        trip_id = vehicle.get("assigned_trip_id")
        if not trip_id:
            return IngestResult(vehicle_id=vehicle_id, appended=False, reason="no_trip")

        trip = await self.store.get(TRIPS, trip_id)
        if trip is None:
            logger.warning(f"vehicle {vehicle_id} points at missing trip {trip_id}")
            return IngestResult(vehicle_id=vehicle_id, trip_id=trip_id, appended=False, reason="trip_missing")

        if trip.get("state") != "ACTIVE":
            # finalized or not yet started routes are never touched
            return IngestResult(
                vehicle_id=vehicle_id,
                trip_id=trip_id,
                appended=False,
                reason=f"trip_{trip.get('state', 'unknown').lower()}",
            )

        route = route_from_docs(trip.get("route"))
        if not route or sample.captured_at_ms >= route[-1].captured_at_ms:
            written = await self.store.push(TRIPS, trip_id, "route", sample.model_dump(), where={"state": "ACTIVE"})
        elif self.ordering == "reject":
            logger.info(
                f"rejected out-of-order sample for trip {trip_id}: "
                f"{sample.captured_at_ms} < tail {route[-1].captured_at_ms}"
            )
            return IngestResult(vehicle_id=vehicle_id, trip_id=trip_id, appended=False, reason="out_of_order")
        else:
            written = await self.store.update(
                TRIPS,
                trip_id,
                {"route": route_to_docs(self._insert_sorted(route, sample))},
                where={"state": "ACTIVE", "route": trip.get("route")},
            )

        if written is None:
            # the trip closed, or its route changed, between our read and the write
            latest = await self.store.get(TRIPS, trip_id) or {}
            state = latest.get("state", "unknown")
            reason = "route_changed" if state == "ACTIVE" else f"trip_{state.lower()}"
            logger.info(f"sample for trip {trip_id} not applied: {reason}")
            return IngestResult(vehicle_id=vehicle_id, trip_id=trip_id, appended=False, reason=reason)
        return IngestResult(vehicle_id=vehicle_id, trip_id=trip_id, appended=True, reason="appended")

    @staticmethod
    def _insert_sorted(route, sample: GeoSample):
        # after any samples with the same timestamp
        keys = [s.captured_at_ms for s in route]
        idx = bisect.bisect_right(keys, sample.captured_at_ms)
        return route[:idx] + [sample] + route[idx:]

    async def _update_last_known(self, vehicle_id: str, vehicle: dict, sample: GeoSample):
        last = vehicle.get("last_known_location")
        if last and last.get("captured_at_ms", 0) > sample.captured_at_ms:
            return
        await self.store.update(VEHICLES, vehicle_id, {"last_known_location": sample.model_dump()})
