"""Deterministic playback over a completed trip's route.

The cursor moves one recorded sample per tick; there is no interpolation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from fleettrack.core.geo import cumulative_distances_km
from fleettrack.errors import NotReplayableError
from fleettrack.schemas.geo import GeoSample
from fleettrack.schemas.trip import ReplayFrame, Trip

logger = logging.getLogger(__name__)

SPEED_MULTIPLIERS = (1, 2, 4)
BASE_TICK_S = 1.0 / 3.0


class ReplayEngine:
    def __init__(self, route: Sequence[GeoSample]):
        self._route: tuple = tuple(route)
        self._cumulative: List[float] = cumulative_distances_km(self._route)
        self.cursor_index = 0
        self.playing = False
        self.speed_multiplier = 1

    @classmethod
    def for_trip(cls, trip: Trip) -> "ReplayEngine":
        if trip.state != "COMPLETED":
            raise NotReplayableError(trip.id, trip.state)
        return cls(trip.route)

    @property
    def route(self) -> tuple:
        return self._route

    @property
    def last_index(self) -> int:
        return max(len(self._route) - 1, 0)

    @property
    def at_end(self) -> bool:
        return self.cursor_index >= self.last_index

    @property
    def tick_interval_s(self) -> float:
        return BASE_TICK_S / self.speed_multiplier

    @property
    def progress_pct(self) -> float:
        # routes of 0 or 1 samples have no span to divide by
        if len(self._route) <= 1:
            return 0.0
        return self.cursor_index / self.last_index * 100.0

    @property
    def distance_so_far_km(self) -> float:
        if not self._cumulative:
            return 0.0
        return self._cumulative[self.cursor_index]

    @property
    def current(self) -> Optional[GeoSample]:
        if not self._route:
            return None
        return self._route[self.cursor_index]

    def seek(self, index: int) -> int:
        self.cursor_index = min(max(int(index), 0), self.last_index)
        return self.cursor_index

    def step(self, delta: int) -> int:
        return self.seek(self.cursor_index + delta)

    def play(self):
        self.playing = True
        if self.at_end:
            self.playing = False

    def pause(self):
        self.playing = False

    def toggle(self):
        if self.playing:
            self.pause()
        else:
            self.play()

    def set_speed(self, multiplier: int):
        if multiplier not in SPEED_MULTIPLIERS:
            raise ValueError(f"speed multiplier must be one of {SPEED_MULTIPLIERS}, got {multiplier!r}")
        self.speed_multiplier = multiplier

    def tick(self) -> bool:
        """Advance one sample if playing. Returns True when the cursor moved."""

        if not self.playing:
            return False
        if self.at_end:
            self.playing = False
            return False
        self.cursor_index += 1
        if self.at_end:
            self.playing = False
        return True

    def frame(self) -> ReplayFrame:
        return ReplayFrame(
            index=self.cursor_index,
            sample=self.current,
            progress_pct=self.progress_pct,
            distance_so_far_km=self.distance_so_far_km,
        )

    def frames(self) -> List[ReplayFrame]:
        saved = self.cursor_index
        out = []
        for i in range(len(self._route)):
            self.cursor_index = i
            out.append(self.frame())
        self.cursor_index = saved
        return out


FrameCallback = Callable[[ReplayFrame], Awaitable[None]]


class ReplayPlayer:
    def __init__(self, engine: ReplayEngine, on_frame: FrameCallback, sleep=asyncio.sleep):
        self.engine = engine
        self.on_frame = on_frame
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def play(self):
        self.engine.play()
        await self.on_frame(self.engine.frame())
        if self.engine.playing and not self.running:
            self._task = asyncio.create_task(self._run())

    async def pause(self):
        self.engine.pause()
        await self.stop()
        await self.on_frame(self.engine.frame())

    async def seek(self, index: int):
        self.engine.seek(index)
        await self.on_frame(self.engine.frame())

    async def step(self, delta: int):
        self.engine.step(delta)
        await self.on_frame(self.engine.frame())

    async def set_speed(self, multiplier: int):
        # next sleep picks up the new interval; position is kept
        self.engine.set_speed(multiplier)

    async def stop(self):
        if self._task is None:
            return
        task, self._task = self._task, None
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self):
        while self.engine.playing:
            await self._sleep(self.engine.tick_interval_s)
            if self.engine.tick():
                await self.on_frame(self.engine.frame())
        logger.debug(f"replay stopped at {self.engine.cursor_index}")
