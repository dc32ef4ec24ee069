import pytest
from fastapi.testclient import TestClient

from fleettrack.db.memory import MemoryDocumentStore
from fleettrack.db.store import VEHICLES
from fleettrack.deps import set_store
from fleettrack.schemas.geo import GeoSample
from fleettrack.schemas.vehicle import Vehicle


def sample(lat, lng, t_s=0, speed=None):
    return GeoSample(lat=lat, lng=lng, speed_mps=speed, captured_at_ms=int(t_s * 1000))


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def clock():
    return FakeClock()


async def add_vehicle(store, vehicle_id="V1", **fields):
    vehicle = Vehicle(id=vehicle_id, **fields)
    await store.put(VEHICLES, vehicle_id, vehicle.model_dump())
    return vehicle


@pytest.fixture
def client():
    from main import app

    set_store(MemoryDocumentStore())
    with TestClient(app) as c:
        yield c
    set_store(None)
