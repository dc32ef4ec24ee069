import time

import pytest
from fastapi import WebSocketDisconnect

from fleettrack.db.store import VEHICLES
from fleettrack.realtime.feed import PresenceSweeper, bind_store
from fleettrack.realtime.manager import VEHICLES_ROOM, WSManager, trip_room
from conftest import FakeClock, add_vehicle


def point(lat, t_s):
    return {"lat": lat, "lng": 47.90, "speed_mps": 10.0, "captured_at_ms": 1_000_000 + t_s * 1000}


def register(client, vehicle_id="V1"):
    res = client.post("/api/vehicles", json={"vehicle_id": vehicle_id, "name": "Truck 1", "vehicle_no": "KW-101"})
    assert res.status_code == 200
    return res.json()


def completed_trip(client, vehicle_id="V1"):
    register(client, vehicle_id)
    trip_id = client.post("/api/trips", json={"vehicle_id": vehicle_id, "origin_label": "Port"}).json()["id"]
    assert client.post(f"/api/trips/{trip_id}/start", json={"sample": point(29.30, 0)}).status_code == 200
    for i, lat in enumerate((29.31, 29.32), start=1):
        res = client.post(f"/api/vehicles/{vehicle_id}/location", json=point(lat, i * 60))
        assert res.json()["appended"] is True
    res = client.post(f"/api/trips/{trip_id}/complete", json={"sample": point(29.33, 180)})
    assert res.status_code == 200
    return res.json()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_register_and_list_vehicles(client):
    created = register(client)
    assert created["id"] == "V1"
    assert created["effective_status"] == "OFFLINE"

    dup = client.post("/api/vehicles", json={"vehicle_id": "V1"})
    assert dup.status_code == 409

    res = client.post("/api/vehicles/V1/heartbeat", json={})
    assert res.json()["ok"] is True

    listed = client.get("/api/vehicles").json()
    assert [v["id"] for v in listed] == ["V1"]
    assert listed[0]["effective_status"] == "ONLINE"


def test_unknown_vehicle_is_404(client):
    assert client.get("/api/vehicles/ghost").status_code == 404
    assert client.post("/api/vehicles/ghost/heartbeat").status_code == 404
    assert client.post("/api/vehicles/ghost/location", json=point(29.3, 0)).status_code == 404
    assert client.post("/api/trips", json={"vehicle_id": "ghost"}).status_code == 404


def test_invalid_sample_is_rejected(client):
    register(client)
    bad = dict(point(29.3, 0), lat=91)
    assert client.post("/api/vehicles/V1/location", json=bad).status_code == 422


def test_trip_lifecycle_over_http(client):
    trip = completed_trip(client)

    assert trip["state"] == "COMPLETED"
    assert [s["lat"] for s in trip["route"]] == [29.30, 29.31, 29.32, 29.33]
    assert trip["distance_km"] == pytest.approx(3 * 1.11195, abs=0.01)
    assert trip["distance_estimated"] is False

    vehicle = client.get("/api/vehicles/V1").json()
    assert vehicle["intended_status"] == "IDLE"
    assert vehicle["assigned_trip_id"] is None

    listed = client.get("/api/trips", params={"vehicle_id": "V1", "state": "COMPLETED"}).json()
    assert [(t["id"], t["samples"]) for t in listed] == [(trip["id"], 4)]

    # closed trips reject every further transition
    for action in ("start", "complete", "cancel"):
        assert client.post(f"/api/trips/{trip['id']}/{action}").status_code == 409


def test_samples_without_active_trip_are_not_appended(client):
    register(client)
    trip_id = client.post("/api/trips", json={"vehicle_id": "V1"}).json()["id"]
    res = client.post("/api/vehicles/V1/location", json=point(29.3, 0)).json()
    assert res["appended"] is False
    assert client.get(f"/api/trips/{trip_id}").json()["route"] == []


def test_busy_vehicle_cannot_start_second_trip(client):
    register(client)
    first = client.post("/api/trips", json={"vehicle_id": "V1"}).json()["id"]
    second = client.post("/api/trips", json={"vehicle_id": "V1"}).json()["id"]
    assert client.post(f"/api/trips/{first}/start").status_code == 200
    assert client.post(f"/api/trips/{second}/start").status_code == 409
    assert client.delete("/api/vehicles/V1").status_code == 409


def test_replay_endpoint(client):
    trip = completed_trip(client)
    out = client.get(f"/api/trips/{trip['id']}/replay").json()

    assert out["total_samples"] == 4
    assert [f["index"] for f in out["frames"]] == [0, 1, 2, 3]
    assert out["frames"][-1]["progress_pct"] == 100.0
    assert out["frames"][-1]["distance_so_far_km"] == pytest.approx(trip["distance_km"])


def test_replay_requires_completed_trip(client):
    register(client)
    trip_id = client.post("/api/trips", json={"vehicle_id": "V1"}).json()["id"]
    assert client.get(f"/api/trips/{trip_id}/replay").status_code == 409
    assert client.get("/api/trips/nope/replay").status_code == 404


def test_fleet_settings(client):
    assert client.get("/api/settings/fleet").json()["sync_speed"] == "MEDIUM"
    assert client.put("/api/settings/fleet", json={"sync_speed": "FAST"}).status_code == 200
    assert client.get("/api/settings/fleet").json()["sync_speed"] == "FAST"
    assert client.put("/api/settings/fleet", json={"sync_speed": "WARP"}).status_code == 422


def test_decommission_hides_vehicle(client):
    register(client)
    assert client.delete("/api/vehicles/V1").json() == {"ok": True}
    assert client.get("/api/vehicles").json() == []
    assert client.get("/api/vehicles/V1").status_code == 404


def test_performance(client):
    completed_trip(client)
    client.post("/api/trips", json={"vehicle_id": "V1"})
    perf = client.get("/api/vehicles/V1/performance").json()
    assert perf["total_trips"] == 2
    assert perf["completed_trips"] == 1
    assert perf["completion_rate_pct"] == 50


def test_vehicles_ws_sends_snapshot(client):
    register(client)
    with client.websocket_connect("/ws/vehicles") as ws:
        msg = ws.receive_json()
    assert msg["type"] == "vehicle"
    assert msg["vehicle"]["id"] == "V1"


def test_replay_ws(client):
    trip = completed_trip(client)
    with client.websocket_connect(f"/ws/replay/{trip['id']}") as ws:
        assert ws.receive_json() == {"type": "ready", "trip_id": trip["id"], "total_samples": 4}
        assert ws.receive_json()["frame"]["index"] == 0

        ws.send_json({"cmd": "seek", "value": 99})
        assert ws.receive_json()["frame"]["index"] == 3

        ws.send_json({"cmd": "step", "value": -2})
        assert ws.receive_json()["frame"]["index"] == 1

        ws.send_json({"cmd": "speed", "value": 3})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"cmd": "rewind"})
        assert ws.receive_json()["type"] == "error"


def test_replay_ws_rejects_open_trip(client):
    register(client)
    trip_id = client.post("/api/trips", json={"vehicle_id": "V1"}).json()["id"]
    with client.websocket_connect(f"/ws/replay/{trip_id}") as ws:
        with pytest.raises(WebSocketDisconnect) as e:
            ws.receive_json()
    assert e.value.code == 4409


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)


@pytest.mark.anyio
async def test_presence_sweeper_announces_lapses(store):
    clock = FakeClock(100_000)
    ws = WSManager()
    sock = FakeSocket()
    await ws.connect(VEHICLES_ROOM, sock)
    await add_vehicle(store, intended_status="ON_TRIP", last_heartbeat_ms=90_000)
    sweeper = PresenceSweeper(store, ws, clock=clock)

    assert await sweeper.sweep_once() == ["V1"]
    assert await sweeper.sweep_once() == []

    clock.now = 200_000
    assert await sweeper.sweep_once() == ["V1"]
    assert [m["vehicle"]["effective_status"] for m in sock.sent] == ["ON_TRIP", "OFFLINE"]


@pytest.mark.anyio
async def test_store_writes_reach_rooms(store):
    ws = WSManager()
    vehicles_sock, trip_sock = FakeSocket(), FakeSocket()
    await ws.connect(VEHICLES_ROOM, vehicles_sock)
    await ws.connect(trip_room("T1"), trip_sock)
    unsubscribers = bind_store(store, ws, clock=FakeClock(0))

    await add_vehicle(store)
    await store.put("trips", "T1", {"vehicle_id": "V1", "state": "ACTIVE", "created_at_ms": 0})
    await store.put("trips", "T2", {"vehicle_id": "V1", "state": "PENDING", "created_at_ms": 0})
    for unsubscribe in unsubscribers:
        unsubscribe()
    await store.update(VEHICLES, "V1", {"last_heartbeat_ms": 5})

    assert [m["vehicle"]["id"] for m in vehicles_sock.sent] == ["V1"]
    assert [(m["trip_id"], m["state"]) for m in trip_sock.sent] == [("T1", "ACTIVE")]


@pytest.mark.parametrize("skew_s", [-120, 10 * 24 * 3600])
def test_heartbeat_ignores_device_clock(client, skew_s):
    register(client)
    device_ms = int(time.time() * 1000) + skew_s * 1000

    before = int(time.time() * 1000)
    stored = client.post("/api/vehicles/V1/heartbeat", json={"at_ms": device_ms}).json()["last_heartbeat_ms"]
    after = int(time.time() * 1000)

    assert before <= stored <= after
    assert client.get("/api/vehicles/V1").json()["effective_status"] == "ONLINE"


def test_trip_tracking_view(client):
    register(client)
    trip = client.post(
        "/api/trips",
        json={"vehicle_id": "V1", "trip_type": "URGENT_DELIVERY", "description": "medical supplies"},
    ).json()
    assert trip["trip_type"] == "URGENT_DELIVERY"
    client.post(f"/api/trips/{trip['id']}/start", json={"sample": point(29.30, 0)})
    client.post("/api/vehicles/V1/location", json=point(29.31, 60))

    view = client.get(f"/api/trips/{trip['id']}/track").json()

    assert view["state"] == "ACTIVE"
    assert view["description"] == "medical supplies"
    assert view["vehicle_no"] == "KW-101"
    assert view["last_known_location"]["lat"] == 29.31
    assert view["effective_status"] == "OFFLINE"
    assert client.get("/api/trips/nope/track").status_code == 404

    with client.websocket_connect(f"/ws/trips/{trip['id']}") as ws:
        first = ws.receive_json()
    assert first["type"] == "tracking"
    assert first["tracking"]["samples"] == 2


def test_unknown_trip_type_is_rejected(client):
    register(client)
    assert client.post("/api/trips", json={"vehicle_id": "V1", "trip_type": "TELEPORT"}).status_code == 422


def test_replay_ws_answers_malformed_commands(client):
    trip = completed_trip(client)
    with client.websocket_connect(f"/ws/replay/{trip['id']}") as ws:
        ws.receive_json()
        ws.receive_json()

        for bad in ("not json", "[1, 2]", '{"cmd": "seek"}'):
            ws.send_text(bad)
            assert ws.receive_json()["type"] == "error"

        ws.send_json({"cmd": "seek", "value": 2})
        assert ws.receive_json()["frame"]["index"] == 2
