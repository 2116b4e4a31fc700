from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from airhub._constants import CHART_DATA_KEY, CHART_TIMESTAMP_KEY
from airhub.exceptions import AirHubStorageError
from airhub.models.chart import ChartPoint
from airhub.models.reading import Coordinate, SourceType, StationReading
from airhub.state.cache import SessionCache, build_chart_point
from airhub.state.store import MergeEngine
from airhub.storage import FileStorage, MemoryStorage

_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
_T0_MS = int(_T0.timestamp() * 1000)


@dataclass
class _Clock:
    now_ms: int = _T0_MS

    def __call__(self) -> int:
        return self.now_ms


@dataclass
class _BrokenStorage:
    """Storage whose every operation fails."""

    calls: list[str] = field(default_factory=list)

    def get(self, key: str) -> str | None:
        self.calls.append(f"get:{key}")
        raise AirHubStorageError("quota exceeded", key=key)

    def set(self, key: str, value: str) -> None:
        self.calls.append(f"set:{key}")
        raise AirHubStorageError("quota exceeded", key=key)

    def remove(self, key: str) -> None:
        self.calls.append(f"remove:{key}")
        raise AirHubStorageError("quota exceeded", key=key)


def _reading(station_id: str, *, lat: float = 21.0285, seconds: int = 0, aqi: float | None = 50.0) -> StationReading:
    return StationReading(
        station_id=station_id,
        coordinate=Coordinate(lat=lat, lng=105.8542),
        observed_at=_T0 + timedelta(seconds=seconds),
        aqi=aqi,
        pm25=12.0,
        source_type=SourceType.OFFICIAL,
    )


def _point(timestamp: int, aqi: float = 10.0) -> ChartPoint:
    return ChartPoint(time="12:00:00", timestamp=timestamp, aqi=aqi)


def test_window_keeps_most_recent_points_in_order() -> None:
    engine = MergeEngine()
    cache = SessionCache(MemoryStorage(), max_points=20, clock=_Clock())

    for step in range(25):
        changes = engine.merge([_reading("hn-01", seconds=step * 30, aqi=float(step))])
        assert changes
        cache.record(engine.view())
        assert len(cache.points) <= 20

    assert len(cache.points) == 20
    expected = [_T0_MS + step * 30_000 for step in range(5, 25)]
    assert [p.timestamp for p in cache.points] == expected
    assert [p.aqi for p in cache.points] == [float(step) for step in range(5, 25)]


def test_window_survives_reload_within_expiry() -> None:
    storage = MemoryStorage()
    clock = _Clock()
    cache = SessionCache(storage, clock=clock)
    cache.append(_point(1))
    cache.append(_point(2))

    clock.now_ms += 9 * 60 * 1000
    reloaded = SessionCache(storage, clock=clock)

    assert [p.timestamp for p in reloaded.load()] == [1, 2]
    assert reloaded.points == cache.points


def test_expired_window_loads_empty() -> None:
    storage = MemoryStorage()
    clock = _Clock()
    SessionCache(storage, clock=clock).append(_point(1))

    clock.now_ms += 10 * 60 * 1000 + 1
    reloaded = SessionCache(storage, clock=clock)

    assert reloaded.load() == ()
    assert storage.get(CHART_DATA_KEY) is None
    assert storage.get(CHART_TIMESTAMP_KEY) is None


def test_custom_expiry() -> None:
    storage = MemoryStorage()
    clock = _Clock()
    SessionCache(storage, clock=clock).append(_point(1))

    clock.now_ms += 5_000
    assert SessionCache(storage, expiry=4.0, clock=clock).load() == ()


def test_persisted_layout() -> None:
    storage = MemoryStorage()
    cache = SessionCache(storage, clock=_Clock())

    cache.append(_point(7, aqi=33.0))

    data = json.loads(storage.get(CHART_DATA_KEY) or "")
    assert data["version"] == 1
    assert data["points"][0]["timestamp"] == 7
    assert data["points"][0]["aqi"] == 33.0
    assert storage.get(CHART_TIMESTAMP_KEY) == str(_T0_MS)


def test_wrong_schema_version_is_discarded() -> None:
    storage = MemoryStorage()
    storage.set(CHART_DATA_KEY, json.dumps({"version": 99, "points": []}))
    storage.set(CHART_TIMESTAMP_KEY, str(_T0_MS))

    assert SessionCache(storage, clock=_Clock()).load() == ()
    assert storage.get(CHART_DATA_KEY) is None


@pytest.mark.parametrize(
    ("data", "timestamp"),
    [
        ("{not json", str(_T0_MS)),
        (json.dumps({"version": 1, "points": [{"time": "x"}]}), str(_T0_MS)),
        (json.dumps({"version": 1, "points": []}), "yesterday"),
    ],
)
def test_corrupt_window_loads_empty(data: str, timestamp: str) -> None:
    storage = MemoryStorage()
    storage.set(CHART_DATA_KEY, data)
    storage.set(CHART_TIMESTAMP_KEY, timestamp)

    cache = SessionCache(storage, clock=_Clock())

    assert cache.load() == ()
    assert cache.points == ()


def test_storage_failures_never_raise() -> None:
    storage = _BrokenStorage()
    cache = SessionCache(storage, clock=_Clock())

    assert cache.load() == ()
    assert cache.append(_point(1))
    cache.clear()

    assert cache.points == ()
    assert "set:airhub_chart_data" in storage.calls


def test_identical_point_is_skipped() -> None:
    cache = SessionCache(None, clock=_Clock())

    assert cache.append(_point(1, aqi=10.0))
    assert not cache.append(_point(1, aqi=10.0))
    assert cache.append(_point(1, aqi=99.0))

    assert [p.aqi for p in cache.points] == [10.0, 99.0]


def test_record_stamps_point_with_changed_readings() -> None:
    engine = MergeEngine()
    cache = SessionCache(None, clock=_Clock())
    first = engine.merge([_reading("a", lat=1.0, seconds=10, aqi=40.0), _reading("b", lat=2.0, seconds=5, aqi=40.0)])
    cache.record(engine.view(), first)

    second = engine.merge([_reading("b", lat=2.0, seconds=7, aqi=140.0)])
    point = cache.record(engine.view(), second)

    assert point is not None
    assert point.timestamp == _T0_MS + 7_000
    assert point.stations == {"a": 40.0, "b": 140.0}
    assert [p.timestamp for p in cache.points] == [_T0_MS + 10_000, _T0_MS + 7_000]


def test_record_without_changes_adds_nothing() -> None:
    engine = MergeEngine()
    cache = SessionCache(None, clock=_Clock())
    engine.merge([_reading("a")])

    assert cache.record(engine.view()) is not None
    assert cache.record(engine.view()) is None
    assert cache.record({}) is None
    assert len(cache.points) == 1


def test_clear_removes_persisted_copy() -> None:
    storage = MemoryStorage()
    cache = SessionCache(storage, clock=_Clock())
    cache.append(_point(1))

    cache.clear()

    assert cache.points == ()
    assert storage.get(CHART_DATA_KEY) is None


def test_build_chart_point_summarizes_state() -> None:
    engine = MergeEngine()
    engine.merge(
        [
            _reading("a", lat=1.0, seconds=10, aqi=40.0),
            _reading("b", lat=2.0, seconds=20, aqi=61.0),
            _reading("c", lat=3.0, seconds=5, aqi=None),
        ]
    )

    point = build_chart_point(engine.view())

    assert point is not None
    assert point.aqi == 50.5
    assert point.pm25 == 12.0
    assert point.pm10 is None
    assert point.timestamp == _T0_MS + 20_000
    assert point.stations == {"a": 40.0, "b": 61.0, "c": None}
    assert len(point.time) == 8


def test_file_storage_round_trip(tmp_path: Path) -> None:
    storage = FileStorage(tmp_path / "cache")

    assert storage.get(CHART_DATA_KEY) is None
    storage.set(CHART_DATA_KEY, '{"a": 1}')
    assert storage.get(CHART_DATA_KEY) == '{"a": 1}'
    storage.set(CHART_DATA_KEY, "second")
    assert storage.get(CHART_DATA_KEY) == "second"
    assert [p.name for p in (tmp_path / "cache").iterdir()] == [f"{CHART_DATA_KEY}.txt"]

    storage.remove(CHART_DATA_KEY)
    storage.remove(CHART_DATA_KEY)
    assert storage.get(CHART_DATA_KEY) is None


def test_file_storage_rejects_unsafe_keys(tmp_path: Path) -> None:
    storage = FileStorage(tmp_path)

    with pytest.raises(AirHubStorageError):
        storage.set("../escape", "x")


def test_session_cache_over_file_storage(tmp_path: Path) -> None:
    clock = _Clock()
    SessionCache(FileStorage(tmp_path), clock=clock).append(_point(5))

    reloaded = SessionCache(FileStorage(tmp_path), clock=clock)

    assert [p.timestamp for p in reloaded.load()] == [5]
