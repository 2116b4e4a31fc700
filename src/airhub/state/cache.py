"""Rolling chart window with best-effort persistence.

The window survives a restart through a :class:`~airhub.storage.KeyValueStorage`.
Caching is a convenience: every storage or serialization failure is logged
and the window is treated as empty, nothing is raised to the hub.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping, Sequence
from statistics import fmean

from pydantic import ValidationError

from airhub._constants import (
    CHART_DATA_KEY,
    CHART_SCHEMA_VERSION,
    CHART_TIMESTAMP_KEY,
    DEFAULT_CACHE_EXPIRY,
    DEFAULT_CACHE_MAX_POINTS,
)
from airhub.exceptions import AirHubStorageError
from airhub.models.chart import CachedWindow, ChartPoint
from airhub.models.reading import POLLUTANT_FIELDS, StationReading
from airhub.state.store import ReadingChange
from airhub.storage import KeyValueStorage

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return round(fmean(values), 2)


def build_chart_point(
    merged: Mapping[str, StationReading],
    changed: Iterable[StationReading] | None = None,
) -> ChartPoint | None:
    """Summarize the merged state into one chart point.

    The point is stamped with the newest observation among *changed*, or
    across the whole state when *changed* is omitted. Returns ``None`` for
    an empty state.
    """
    if not merged:
        return None
    readings = [merged[key] for key in sorted(merged)]
    stamped = list(changed) if changed is not None else []
    newest = max(reading.observed_at for reading in (stamped or readings))

    averages: dict[str, float | None] = {}
    for name in ("aqi", *POLLUTANT_FIELDS):
        averages[name] = _mean([value for r in readings if (value := getattr(r, name)) is not None])

    return ChartPoint(
        time=newest.astimezone().strftime("%H:%M:%S"),
        timestamp=int(newest.timestamp() * 1000),
        stations={reading.station_id: reading.aqi for reading in readings},
        **averages,
    )


class SessionCache:
    """Capped window of chart points, persisted on every change."""

    def __init__(
        self,
        storage: KeyValueStorage | None,
        *,
        max_points: int = DEFAULT_CACHE_MAX_POINTS,
        expiry: float = DEFAULT_CACHE_EXPIRY,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if max_points < 1:
            raise ValueError(f"max_points must be at least 1, got {max_points}")
        self._storage = storage
        self._expiry_ms = int(expiry * 1000)
        self._clock = clock
        self._points: deque[ChartPoint] = deque(maxlen=max_points)

    @property
    def max_points(self) -> int:
        return self._points.maxlen or 0

    @property
    def points(self) -> tuple[ChartPoint, ...]:
        """Chart points, oldest first."""
        return tuple(self._points)

    def load(self) -> tuple[ChartPoint, ...]:
        """Replace the in-memory window with the persisted one, if still fresh."""
        self._points.clear()
        if self._storage is None:
            return ()
        try:
            saved_ts = self._storage.get(CHART_TIMESTAMP_KEY)
            saved = self._storage.get(CHART_DATA_KEY)
            if not saved or not saved_ts:
                return ()

            age = self._clock() - int(saved_ts)
            if age > self._expiry_ms:
                _logger.debug("Persisted chart window is %.0f s old; discarding", age / 1000)
                self._discard()
                return ()

            window = CachedWindow.model_validate_json(saved)
            if window.version != CHART_SCHEMA_VERSION:
                _logger.info(
                    "Persisted chart window has schema version %s (expected %s); discarding",
                    window.version,
                    CHART_SCHEMA_VERSION,
                )
                self._discard()
                return ()
        except (AirHubStorageError, ValidationError, ValueError):
            _logger.warning("Failed to load chart window; starting empty", exc_info=True)
            self._points.clear()
            return ()

        self._points.extend(window.points)
        _logger.debug("Loaded %d cached chart point(s)", len(self._points))
        return self.points

    def append(self, point: ChartPoint) -> bool:
        """Append *point*, dropping the oldest when full.

        A point identical to the newest one is a re-delivery and is skipped.
        Returns whether the window changed.
        """
        if self._points and self._points[-1] == point:
            return False
        self._points.append(point)
        self._persist()
        return True

    def record(
        self,
        merged: Mapping[str, StationReading],
        changes: Sequence[ReadingChange] | None = None,
    ) -> ChartPoint | None:
        """Derive a point from the merged state and append it.

        With *changes*, the point is stamped with the newest changed
        observation. Returns the point if the window changed.
        """
        changed = [change.current for change in changes] if changes is not None else None
        point = build_chart_point(merged, changed)
        if point is None or not self.append(point):
            return None
        return point

    def clear(self) -> None:
        """Empty the window and remove the persisted copy."""
        self._points.clear()
        self._discard()

    def _persist(self) -> None:
        if self._storage is None:
            return
        try:
            payload = CachedWindow(points=tuple(self._points)).model_dump_json()
            self._storage.set(CHART_DATA_KEY, payload)
            self._storage.set(CHART_TIMESTAMP_KEY, str(self._clock()))
        except (AirHubStorageError, ValueError, TypeError):
            _logger.warning("Failed to persist chart window", exc_info=True)

    def _discard(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.remove(CHART_DATA_KEY)
            self._storage.remove(CHART_TIMESTAMP_KEY)
        except AirHubStorageError:
            _logger.warning("Failed to remove persisted chart window", exc_info=True)
