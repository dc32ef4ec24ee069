"""Run a location reporter for one vehicle against a running API.

Positions are replayed from a CSV with columns ``lat,lng,speed_mps,timestamp_ms``
(speed optional), paced by the recorded timestamps.

Run:
    python -m fleettrack.reporter --vehicle V1 --api http://127.0.0.1:8000 --csv track.csv
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import logging
from pathlib import Path
from typing import Iterator, List, Optional

import httpx
from pydantic import ValidationError

from fleettrack.core import config
from fleettrack.errors import PositionUnavailable
from fleettrack.schemas.geo import GeoSample
from fleettrack.services.reporter import HttpSampleSink, HttpSettingsSource, LocationReporter

logger = logging.getLogger(__name__)


def iter_csv_fixes(csv_path: str | Path) -> Iterator[object]:
    """Yield a GeoSample per row, or a PositionUnavailable for rows that cannot be used."""

    p = Path(csv_path)
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for line, row in enumerate(reader, start=2):
            try:
                speed = (row.get("speed_mps") or "").strip()
                yield GeoSample(
                    lat=float(row["lat"]),
                    lng=float(row["lng"]),
                    speed_mps=float(speed) if speed else None,
                    captured_at_ms=int(row["timestamp_ms"]),
                )
            except KeyError as exc:
                raise KeyError(f"CSV is missing column {exc}; found {reader.fieldnames}") from exc
            except (ValueError, TypeError, ValidationError) as exc:
                yield PositionUnavailable(PositionUnavailable.TRANSIENT, f"line {line}: {exc}")


class CsvPositionSource:
    def __init__(self, items: List[object], time_scale: float = 1.0, sleep=asyncio.sleep):
        self._items = list(items)
        self._pos = 0
        self._last_ts: Optional[int] = None
        self.time_scale = time_scale
        self._sleep = sleep

    async def next_fix(self) -> Optional[GeoSample]:
        if self._pos >= len(self._items):
            return None
        item = self._items[self._pos]
        self._pos += 1
        if isinstance(item, PositionUnavailable):
            raise item
        if self._last_ts is not None and self.time_scale > 0:
            gap_s = max(item.captured_at_ms - self._last_ts, 0) / 1000.0
            await self._sleep(gap_s / self.time_scale)
        self._last_ts = item.captured_at_ms
        return item


async def run_reporter(args: argparse.Namespace) -> int:
    fixes = list(iter_csv_fixes(args.csv))
    source = CsvPositionSource(fixes, time_scale=args.time_scale)
    async with httpx.AsyncClient(base_url=args.api, timeout=args.timeout) as client:
        reporter = LocationReporter(
            args.vehicle,
            source,
            HttpSampleSink(client),
            HttpSettingsSource(client),
            heartbeat_interval_s=args.heartbeat_interval,
            # bad CSV rows are not worth waiting on
            position_retry_s=0.0,
        )
        await reporter.run()
        print(f"sent={reporter.delivery.sent} dropped={reporter.delivery.dropped} fixes={len(fixes)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fleettrack.reporter", description="Stream a recorded track to the fleet API")
    p.add_argument("--vehicle", required=True, help="vehicle id registered with the API")
    p.add_argument("--api", default="http://127.0.0.1:8000", help="API base URL")
    p.add_argument("--csv", required=True, help="CSV with lat,lng,speed_mps,timestamp_ms")
    p.add_argument(
        "--time-scale",
        type=float,
        default=1.0,
        help="playback speed-up relative to the recorded timing; 0 sends as fast as possible",
    )
    p.add_argument("--heartbeat-interval", type=float, default=config.HEARTBEAT_INTERVAL_S)
    p.add_argument("--timeout", type=float, default=10.0, help="HTTP timeout in seconds")
    p.add_argument("--log-level", default=config.LOG_LEVEL)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return asyncio.run(run_reporter(args))


if __name__ == "__main__":
    raise SystemExit(main())
