from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from fleettrack.db.store import DocumentStore
from fleettrack.deps import get_store
from fleettrack.errors import InvalidTransitionError, NotFoundError, NotReplayableError, VehicleBusyError
from fleettrack.schemas.trip import ReplayOut, Trip, TripCreate, TripState, TripSummary, TripTracking, TripTransition
from fleettrack.services.replay import ReplayEngine
from fleettrack.services.trips import TripService

router = APIRouter()


def summarize(trip: Trip) -> TripSummary:
    return TripSummary(samples=len(trip.route), **trip.model_dump(exclude={"route", "start_sample", "end_sample"}))


async def _run(action):
    try:
        return await action
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidTransitionError, VehicleBusyError, NotReplayableError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/trips", response_model=Trip)
async def dispatch_trip(payload: TripCreate, store: DocumentStore = Depends(get_store)):
    return await _run(
        TripService(store).dispatch(
            payload.vehicle_id,
            payload.origin_label,
            payload.destination_label,
            payload.trip_type,
            payload.description,
        )
    )


@router.get("/trips", response_model=List[TripSummary])
async def list_trips(
    vehicle_id: Optional[str] = None,
    state: Optional[TripState] = None,
    store: DocumentStore = Depends(get_store),
):
    trips = await TripService(store).list_trips(vehicle_id=vehicle_id, state=state)
    return [summarize(t) for t in trips]


@router.get("/trips/{trip_id}", response_model=Trip)
async def get_trip(trip_id: str, store: DocumentStore = Depends(get_store)):
    return await _run(TripService(store).get_trip(trip_id))


@router.get("/trips/{trip_id}/track", response_model=TripTracking)
async def track_trip(trip_id: str, store: DocumentStore = Depends(get_store)):
    return await _run(TripService(store).tracking(trip_id))


@router.post("/trips/{trip_id}/start", response_model=Trip)
async def start_trip(trip_id: str, body: Optional[TripTransition] = None, store: DocumentStore = Depends(get_store)):
    return await _run(TripService(store).start(trip_id, body.sample if body else None))


@router.post("/trips/{trip_id}/complete", response_model=Trip)
async def complete_trip(trip_id: str, body: Optional[TripTransition] = None, store: DocumentStore = Depends(get_store)):
    return await _run(TripService(store).complete(trip_id, body.sample if body else None))


@router.post("/trips/{trip_id}/cancel", response_model=Trip)
async def cancel_trip(trip_id: str, store: DocumentStore = Depends(get_store)):
    return await _run(TripService(store).cancel(trip_id))


@router.get("/trips/{trip_id}/replay", response_model=ReplayOut)
async def replay_trip(trip_id: str, store: DocumentStore = Depends(get_store)):
    trip = await _run(TripService(store).get_trip(trip_id))
    try:
        engine = ReplayEngine.for_trip(trip)
    except NotReplayableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ReplayOut(
        trip_id=trip.id,
        total_samples=len(engine.route),
        distance_km=trip.distance_km,
        frames=engine.frames(),
    )
