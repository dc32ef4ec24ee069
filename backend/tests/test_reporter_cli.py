import pytest

from fleettrack.errors import PositionUnavailable
from fleettrack.reporter import CsvPositionSource, build_parser, iter_csv_fixes
from fleettrack.schemas.geo import GeoSample


def write_csv(tmp_path, text):
    p = tmp_path / "track.csv"
    p.write_text(text, encoding="utf-8")
    return p


def test_iter_csv_fixes(tmp_path):
    p = write_csv(
        tmp_path,
        "lat,lng,speed_mps,timestamp_ms\n"
        "29.30,47.90,12.5,1000\n"
        "29.31,47.90,,2000\n"
        "not-a-number,47.90,,3000\n"
        "95,47.90,,4000\n",
    )
    items = list(iter_csv_fixes(p))

    assert items[0] == GeoSample(lat=29.30, lng=47.90, speed_mps=12.5, captured_at_ms=1000)
    assert items[1].speed_mps is None
    assert isinstance(items[2], PositionUnavailable)
    assert "line 4" in str(items[2])
    assert isinstance(items[3], PositionUnavailable)


def test_missing_column(tmp_path):
    p = write_csv(tmp_path, "lat,lng\n29.3,47.9\n")
    with pytest.raises(KeyError):
        list(iter_csv_fixes(p))


@pytest.mark.anyio
async def test_csv_source_paces_by_recorded_time():
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    items = [
        GeoSample(lat=29.30, lng=47.90, captured_at_ms=0),
        PositionUnavailable(PositionUnavailable.TRANSIENT, "bad row"),
        GeoSample(lat=29.31, lng=47.90, captured_at_ms=10_000),
    ]
    source = CsvPositionSource(items, time_scale=2.0, sleep=fake_sleep)

    assert (await source.next_fix()).captured_at_ms == 0
    with pytest.raises(PositionUnavailable):
        await source.next_fix()
    assert (await source.next_fix()).captured_at_ms == 10_000
    assert await source.next_fix() is None
    assert slept == [5.0]


def test_parser_defaults():
    args = build_parser().parse_args(["--vehicle", "V1", "--csv", "t.csv"])
    assert args.api == "http://127.0.0.1:8000"
    assert args.time_scale == 1.0
