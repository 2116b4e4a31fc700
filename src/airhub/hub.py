"""Distribution hub: the single owner of merged state, alerts and status.

Usage::

    async with AirQualityHub(HubConfig.from_env()) as hub:
        unsubscribe = hub.subscribe(print)
        hub.start()
        ...
        await hub.refresh()

Every completed cycle that changed anything publishes a new immutable
:class:`HubSnapshot`; until then subscribers keep receiving the same object.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import cached_property
from statistics import fmean
from types import MappingProxyType
from typing import Any

import aiohttp

from airhub._api import airquality as _airquality_api
from airhub._mqtt import BrokerMessage, BrokerRuntime, build_broker_settings
from airhub._transport import HttpTransport, Transport
from airhub.aqi import AqiBand, band_for
from airhub.config import HubConfig
from airhub.exceptions import AirHubError
from airhub.ingestion.classify import SourceClassifier
from airhub.ingestion.mqtt import readings_from_broker_payload
from airhub.ingestion.poller import SnapshotPoller
from airhub.ingestion.snapshot import NormalizationResult, normalize_snapshot
from airhub.models.alert import Alert
from airhub.models.chart import ChartPoint
from airhub.models.reading import SourceType, StationReading
from airhub.state.alerts import AlertEvaluator
from airhub.state.cache import SessionCache
from airhub.state.store import MergeEngine
from airhub.storage import FileStorage, KeyValueStorage

_logger = logging.getLogger(__name__)

Subscriber = Callable[["HubSnapshot"], None]

_EMPTY_STATE: Mapping[str, StationReading] = MappingProxyType({})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StationMarker:
    """Display-ready summary of one merged reading."""

    key: str
    station_id: str
    name: str | None
    lat: float
    lng: float
    aqi: float | None
    band: AqiBand | None
    source_type: SourceType | None
    observed_at: datetime


@dataclass(frozen=True, eq=False)
class HubSnapshot:
    """Immutable view of the hub handed to subscribers.

    Derived views are computed at most once per snapshot, so any number of
    subscribers can read them without recomputing.

    Parameters
    ----------
    latest_data : Mapping[str, StationReading]
        Read-only merged state keyed by coordinate key.
    alerts : tuple of Alert
        Alert log, newest first.
    chart : tuple of ChartPoint
        Rolling chart window, oldest first.
    is_loading : bool
        No fetch has completed yet.
    is_connected : bool
        The last fetch succeeded.
    error : str or None
        Reason of the last fetch failure, cleared on success.
    consecutive_failures : int
        Number of failed fetches since the last success.
    version : int
        Publish counter; increases by one per published snapshot.
    thresholds : tuple of float
        AQI cut points used to band the markers.
    """

    latest_data: Mapping[str, StationReading]
    alerts: tuple[Alert, ...]
    chart: tuple[ChartPoint, ...]
    is_loading: bool
    is_connected: bool
    error: str | None
    consecutive_failures: int
    version: int
    thresholds: tuple[float, ...]

    @cached_property
    def readings(self) -> tuple[StationReading, ...]:
        """Merged readings ordered by coordinate key."""
        return tuple(self.latest_data[key] for key in sorted(self.latest_data))

    @cached_property
    def by_station(self) -> Mapping[str, StationReading]:
        """Newest reading per station id."""
        latest: dict[str, StationReading] = {}
        for reading in self.readings:
            existing = latest.get(reading.station_id)
            if existing is None or reading.observed_at > existing.observed_at:
                latest[reading.station_id] = reading
        return MappingProxyType(latest)

    @cached_property
    def markers(self) -> tuple[StationMarker, ...]:
        return tuple(
            StationMarker(
                key=reading.key,
                station_id=reading.station_id,
                name=reading.name,
                lat=reading.coordinate.lat,
                lng=reading.coordinate.lng,
                aqi=reading.aqi,
                band=band_for(reading.aqi, self.thresholds) if reading.aqi is not None else None,
                source_type=reading.source_type,
                observed_at=reading.observed_at,
            )
            for reading in self.readings
        )

    @cached_property
    def source_counts(self) -> Mapping[SourceType, int]:
        counts = Counter(reading.source_type for reading in self.readings if reading.source_type is not None)
        return MappingProxyType(dict(counts))

    @cached_property
    def average_aqi(self) -> float | None:
        values = [reading.aqi for reading in self.readings if reading.aqi is not None]
        if not values:
            return None
        return round(fmean(values), 2)

    @cached_property
    def worst(self) -> StationReading | None:
        """Reading with the highest AQI; the first by key wins ties."""
        worst: StationReading | None = None
        for reading in self.readings:
            if reading.aqi is None:
                continue
            if worst is None or reading.aqi > (worst.aqi or 0):
                worst = reading
        return worst


class AirQualityHub:
    """Shared live air quality state for any number of subscribers.

    Fetch cycles never overlap: a timer tick that finds a cycle in flight is
    skipped, while :meth:`refresh` waits for it. Results of fetches that
    complete after :meth:`stop` are ignored.
    """

    def __init__(
        self,
        config: HubConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        storage: KeyValueStorage | None = None,
        classifier: SourceClassifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or HubConfig()
        self._config.validate()
        self._clock = clock
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport

        self._classifier = classifier or SourceClassifier(fallback=self._config.fallback_source_type)
        self._engine = MergeEngine()
        self._alerts = AlertEvaluator(cap=self._config.alert_cap, thresholds=self._config.alert_thresholds)
        if storage is None and self._config.cache_enabled:
            storage = FileStorage(self._config.cache_dir)
        self._cache = SessionCache(
            storage if self._config.cache_enabled else None,
            max_points=self._config.cache_max_points,
            expiry=self._config.cache_expiry,
            clock=lambda: int(self._clock().timestamp() * 1000),
        )
        self._cache.load()

        self._poller = SnapshotPoller(self._fetch_snapshot, interval=self._config.poll_interval, clock=clock)
        self._cycle_lock = asyncio.Lock()
        self._generation = 0
        self._applied_sequence = 0
        self._has_outcome = False
        self._closed = False
        self._mqtt_runtime: BrokerRuntime | None = None

        self._subscribers: list[Subscriber] = []
        self._state_view: Mapping[str, StationReading] = _EMPTY_STATE
        self._version = 0
        self._published_status = self._status()
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> AirQualityHub:
        if self._closed:
            raise AirHubError("Hub is closed")
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        self._start_mqtt()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop the timer and the broker runtime and release the HTTP session."""
        if self._closed:
            return
        await self.stop()
        self._closed = True
        self._stop_mqtt()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> HubConfig:
        return self._config

    @property
    def snapshot(self) -> HubSnapshot:
        """The most recently published snapshot."""
        return self._snapshot

    @property
    def last_success_at(self) -> datetime | None:
        return self._poller.last_success_at

    @property
    def is_running(self) -> bool:
        return self._poller.is_running

    @property
    def is_closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Subscriber, *, replay: bool = True) -> Callable[[], None]:
        """Register *callback* for published snapshots.

        Subscribers are called in subscription order. With *replay* the
        current snapshot is delivered immediately. Returns a function that
        unsubscribes; calling it more than once is harmless.
        """
        self._subscribers.append(callback)
        if replay:
            self._deliver(callback, self._snapshot)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def start(self) -> None:
        """Start periodic fetch cycles; the first runs immediately."""
        if self._closed:
            raise AirHubError("Hub is closed")
        self._require_transport()
        _logger.debug("Starting poll timer every %.1f s", self._poller.interval)
        self._poller.start(self._on_tick)

    async def stop(self) -> None:
        """Stop periodic fetch cycles and ignore any fetch still in flight."""
        self._generation += 1
        await self._poller.stop()

    async def refresh(self) -> HubSnapshot:
        """Run one fetch cycle now and return the snapshot after its merge.

        Waits for a cycle already in flight to finish first.
        """
        return await self._run_cycle()

    def ingest(self, payload: Any, *, source: SourceType | None = None) -> HubSnapshot:
        """Apply a payload received outside the poll loop.

        Readings without an explicit provenance tag are tagged *source*, or
        classified when *source* is ``None``.
        """
        if self._closed:
            raise AirHubError("Hub is closed")
        result = normalize_snapshot(payload, clock=self._clock)
        self._publish(self._apply(result, source=source))
        return self._snapshot

    async def get_history(
        self,
        station_id: str | None,
        start: datetime,
        end: datetime,
    ) -> list[StationReading]:
        """Classified readings of *station_id* between *start* and *end*, oldest first.

        History is returned as-is and never merged into the live state.
        """
        transport = self._require_transport()
        payload = await _airquality_api.fetch_history(
            self._config, transport, start=start, end=end, station_id=station_id
        )
        readings = self._classify(normalize_snapshot(payload, clock=self._clock))
        if not readings and station_id:
            _logger.debug("No history for station=%s; retrying unfiltered", station_id)
            payload = await _airquality_api.fetch_history(self._config, transport, start=start, end=end)
            readings = [
                reading
                for reading in self._classify(normalize_snapshot(payload, clock=self._clock))
                if reading.station_id == station_id
            ]
        return sorted(readings, key=lambda reading: reading.observed_at)

    def clear_cache(self) -> None:
        """Drop the chart window, including its persisted copy."""
        self._cache.clear()
        self._publish(True)

    # ------------------------------------------------------------------
    # Fetch cycle
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise AirHubError("Hub not initialized. Use 'async with AirQualityHub(...) as hub:'")
        return self._transport

    async def _fetch_snapshot(self) -> Any:
        return await _airquality_api.fetch_latest_snapshot(self._config, self._require_transport())

    async def _on_tick(self) -> None:
        if self._cycle_lock.locked():
            _logger.debug("Previous cycle still running; skipping tick")
            return
        await self._run_cycle()

    async def _run_cycle(self) -> HubSnapshot:
        generation = self._generation
        async with self._cycle_lock:
            if self._closed:
                raise AirHubError("Hub is closed")
            outcome = await self._poller.fetch_once()

            if generation != self._generation:
                _logger.debug("Ignoring fetch #%d: hub stopped while it was in flight", outcome.sequence)
                return self._snapshot
            if outcome.sequence <= self._applied_sequence:
                _logger.debug(
                    "Discarding stale fetch #%d (already applied #%d)",
                    outcome.sequence,
                    self._applied_sequence,
                )
                return self._snapshot
            self._applied_sequence = outcome.sequence
            self._poller.commit(outcome)
            self._has_outcome = True

            changed = False
            if outcome.ok:
                changed = self._apply(normalize_snapshot(outcome.payload, clock=self._clock))
            self._publish(changed)
            return self._snapshot

    def _classify(self, result: NormalizationResult, source: SourceType | None = None) -> list[StationReading]:
        readings = result.readings
        if source is not None:
            readings = [
                reading if reading.source_type is not None else reading.with_source(source) for reading in readings
            ]
        return self._classifier.classify_all(readings)

    def _apply(self, result: NormalizationResult, *, source: SourceType | None = None) -> bool:
        """Merge one normalized batch; returns whether the state changed."""
        changes = self._engine.merge(self._classify(result, source))
        if not changes:
            _logger.debug("Merged %d reading(s); no changes", len(result.readings))
            return False
        _logger.debug("Merged %d reading(s); %d changed", len(result.readings), len(changes))
        self._state_view = self._engine.view()
        self._alerts.evaluate(changes)
        self._cache.record(self._state_view, changes)
        return True

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _is_connected(self) -> bool:
        return self._poller.has_succeeded and self._poller.consecutive_failures == 0

    def _status(self) -> tuple[bool, bool, str | None, int]:
        return (
            not self._has_outcome,
            self._is_connected(),
            self._poller.last_error,
            self._poller.consecutive_failures,
        )

    def _build_snapshot(self) -> HubSnapshot:
        is_loading, is_connected, error, failures = self._published_status
        return HubSnapshot(
            latest_data=self._state_view,
            alerts=self._alerts.alerts,
            chart=self._cache.points,
            is_loading=is_loading,
            is_connected=is_connected,
            error=error,
            consecutive_failures=failures,
            version=self._version,
            thresholds=tuple(self._config.alert_thresholds),
        )

    def _publish(self, changed: bool) -> None:
        status = self._status()
        if not changed and status == self._published_status:
            return
        self._published_status = status
        self._version += 1
        self._snapshot = self._build_snapshot()
        _logger.debug("Publishing snapshot v%d to %d subscriber(s)", self._version, len(self._subscribers))
        for callback in tuple(self._subscribers):
            self._deliver(callback, self._snapshot)

    def _deliver(self, callback: Subscriber, snapshot: HubSnapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            _logger.warning("Subscriber %r failed", callback, exc_info=True)

    # ------------------------------------------------------------------
    # Broker push
    # ------------------------------------------------------------------

    def _start_mqtt(self) -> None:
        """Best-effort broker startup (failures must not break polling)."""
        if not self._config.mqtt_enabled or self._mqtt_runtime is not None:
            return
        try:
            runtime = BrokerRuntime(
                loop=asyncio.get_running_loop(),
                on_message=self._on_broker_message,
                keepalive=self._config.mqtt_keepalive,
                logger=_logger,
            )
            runtime.start(build_broker_settings(self._config))
            self._mqtt_runtime = runtime
        except Exception:
            _logger.warning("MQTT startup failed", exc_info=True)

    def _stop_mqtt(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            runtime.stop()

    def _on_broker_message(self, message: BrokerMessage) -> None:
        """Apply a broker message (called on the loop via call_soon_threadsafe)."""
        if self._closed:
            return
        result = readings_from_broker_payload(message.payload, clock=self._clock)
        _logger.debug("Broker message on %s: %d reading(s)", message.topic, len(result.readings))
        self._publish(self._apply(result))


_hub: AirQualityHub | None = None


def get_hub(config: HubConfig | None = None, **kwargs: Any) -> AirQualityHub:
    """Return the process-wide hub, creating it on first use.

    *config* and *kwargs* only apply when a new hub is created.
    """
    global _hub
    if _hub is None or _hub.is_closed:
        _hub = AirQualityHub(config, **kwargs)
    return _hub


async def reset_hub() -> None:
    """Close and forget the process-wide hub."""
    global _hub
    hub, _hub = _hub, None
    if hub is not None:
        await hub.close()
