"""Per-vehicle location reporter with at-most-once delivery: one send attempt, failures are dropped."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Protocol

import httpx

from fleettrack.core import config
from fleettrack.core.geo import haversine_m
from fleettrack.db.store import SETTINGS, TRIPS, DocumentStore
from fleettrack.errors import FleetError, PositionUnavailable, TransmissionError
from fleettrack.schemas.geo import GeoSample
from fleettrack.services.accumulator import RouteAccumulator
from fleettrack.services.presence import now_ms, record_heartbeat

logger = logging.getLogger(__name__)

DEFAULT_SYNC_SPEED = "MEDIUM"


class PositionSource(Protocol):
    async def next_fix(self) -> Optional[GeoSample]:
        """Next device fix, or None once the source is closed.

        Raises PositionUnavailable when no fix could be obtained.
        """


class SampleSink(Protocol):
    async def send_sample(self, vehicle_id: str, sample: GeoSample) -> None: ...

    async def send_heartbeat(self, vehicle_id: str, at_ms: int) -> None: ...


class SettingsSource(Protocol):
    async def sync_speed(self) -> str: ...


class EmissionPolicy:
    def __init__(
        self,
        movement_threshold_m: float = config.MOVEMENT_THRESHOLD_M,
        time_thresholds_ms: Optional[Dict[str, int]] = None,
    ):
        self.movement_threshold_m = movement_threshold_m
        self.time_thresholds_ms = time_thresholds_ms or dict(config.SYNC_THRESHOLD_MS)

    def time_threshold_ms(self, sync_speed: str) -> int:
        return self.time_thresholds_ms.get(sync_speed, self.time_thresholds_ms[DEFAULT_SYNC_SPEED])

    def should_emit(self, last: Optional[GeoSample], current: GeoSample, sync_speed: str) -> bool:
        if last is None:
            return True
        if haversine_m(last, current) > self.movement_threshold_m:
            return True
        return current.captured_at_ms - last.captured_at_ms > self.time_threshold_ms(sync_speed)


class AtMostOnceDelivery:
    """Single send attempt. Returns False instead of raising on transport failure."""

    def __init__(self):
        self.sent = 0
        self.dropped = 0

    async def deliver(self, send: Callable[..., Awaitable[None]], *args) -> bool:
        try:
            await send(*args)
        except (TransmissionError, httpx.HTTPError, FleetError) as e:
            self.dropped += 1
            logger.warning(f"dropped {getattr(send, '__name__', 'send')}{args[:1]}: {e}")
            return False
        self.sent += 1
        return True


class AccumulatorSink:
    """Delivers straight into the ingestion path of this process."""

    def __init__(
        self,
        store: DocumentStore,
        accumulator: Optional[RouteAccumulator] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.accumulator = accumulator or RouteAccumulator.from_config(store)
        self.clock = clock

    async def send_sample(self, vehicle_id: str, sample: GeoSample) -> None:
        await self.accumulator.ingest(vehicle_id, sample)

    async def send_heartbeat(self, vehicle_id: str, at_ms: int) -> None:
        await record_heartbeat(self.store, vehicle_id, self.clock(), at_ms)


class HttpSampleSink:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _post(self, path: str, body: dict):
        try:
            res = await self.client.post(path, json=body)
            res.raise_for_status()
        except httpx.HTTPError as e:
            raise TransmissionError(f"POST {path} failed: {e}") from e

    async def send_sample(self, vehicle_id: str, sample: GeoSample) -> None:
        await self._post(f"/api/vehicles/{vehicle_id}/location", sample.model_dump())

    async def send_heartbeat(self, vehicle_id: str, at_ms: int) -> None:
        await self._post(f"/api/vehicles/{vehicle_id}/heartbeat", {"at_ms": at_ms})


class StoreSettingsSource:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def sync_speed(self) -> str:
        doc = await self.store.latest(SETTINGS, "fleet")
        return (doc or {}).get("sync_speed") or DEFAULT_SYNC_SPEED


class HttpSettingsSource:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self._last = DEFAULT_SYNC_SPEED

    async def sync_speed(self) -> str:
        try:
            res = await self.client.get("/api/settings/fleet")
            res.raise_for_status()
            self._last = res.json().get("sync_speed") or self._last
        except httpx.HTTPError as e:
            logger.warning(f"settings read failed, keeping {self._last}: {e}")
        return self._last


class LocationReporter:
    def __init__(
        self,
        vehicle_id: str,
        source: PositionSource,
        sink: SampleSink,
        settings: SettingsSource,
        policy: Optional[EmissionPolicy] = None,
        delivery: Optional[AtMostOnceDelivery] = None,
        heartbeat_interval_s: float = config.HEARTBEAT_INTERVAL_S,
        position_retry_s: float = 1.0,
        position_retry_max_s: float = 30.0,
        clock: Callable[[], int] = now_ms,
        sleep=asyncio.sleep,
    ):
        self.vehicle_id = vehicle_id
        self.source = source
        self.sink = sink
        self.settings = settings
        self.policy = policy or EmissionPolicy()
        self.delivery = delivery or AtMostOnceDelivery()
        self.heartbeat_interval_s = heartbeat_interval_s
        self.position_retry_s = position_retry_s
        self.position_retry_max_s = position_retry_max_s
        self.clock = clock
        self._sleep = sleep
        self.last_emitted: Optional[GeoSample] = None
        self._task: Optional[asyncio.Task] = None

    async def offer(self, fix: GeoSample) -> bool:
        sync_speed = await self.settings.sync_speed()
        if not self.policy.should_emit(self.last_emitted, fix, sync_speed):
            return False
        delivered = await self.delivery.deliver(self.sink.send_sample, self.vehicle_id, fix)
        if delivered:
            self.last_emitted = fix
        return delivered

    async def heartbeat_loop(self):
        while True:
            await self.delivery.deliver(self.sink.send_heartbeat, self.vehicle_id, self.clock())
            await asyncio.sleep(self.heartbeat_interval_s)

    async def run(self):
        heartbeat = asyncio.create_task(self.heartbeat_loop())
        failures = 0
        try:
            while True:
                try:
                    fix = await self.source.next_fix()
                except PositionUnavailable as e:
                    failures += 1
                    delay = min(self.position_retry_s * 2 ** min(failures - 1, 16), self.position_retry_max_s)
                    logger.info(f"{self.vehicle_id}: no position fix ({e}), retrying in {delay:.1f}s")
                    # always yield here: heartbeats must keep going while fixes fail
                    await self._sleep(delay)
                    continue
                failures = 0
                if fix is None:
                    break
                await self.offer(fix)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
        logger.info(
            f"{self.vehicle_id}: reporter finished sent={self.delivery.sent} dropped={self.delivery.dropped}"
        )

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass


def watch_trip_state(store: DocumentStore, trip_id: str, reporter: LocationReporter):
    """Stop ``reporter`` as soon as the trip document leaves ACTIVE. Returns an unsubscribe function."""

    async def on_change(collection, doc_id, doc):
        if doc.get("state") != "ACTIVE" and reporter.running:
            logger.info(f"trip {doc_id} is {doc.get('state')}; stopping reporter {reporter.vehicle_id}")
            await reporter.stop()

    return store.subscribe(TRIPS, on_change, filter={"id": trip_id})
