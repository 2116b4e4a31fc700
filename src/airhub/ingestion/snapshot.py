"""Snapshot normalization.

Turns one raw snapshot payload (array or keyed object) into canonical
:class:`~airhub.models.reading.StationReading` values. A malformed record
is dropped and counted; it never aborts the batch.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from airhub.aqi import aqi_from_pm25
from airhub.exceptions import AirHubNormalizationError
from airhub.ingestion.classify import parse_source_tag
from airhub.ingestion.normalize import iter_snapshot_records
from airhub.models.reading import Coordinate, RawStationRecord, StationReading

_logger = logging.getLogger(__name__)

_ENTITY_STATION_RE = re.compile(r"AirQualityObserved:([^:]+)")
_SENSOR_DEVICE_RE = re.compile(r"Device:([^:]+)$", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class NormalizationResult:
    """Outcome of normalizing one payload."""

    readings: list[StationReading] = field(default_factory=list)
    dropped: int = 0
    fallback_timestamps: int = 0


def _resolve_station_id(record: RawStationRecord, key_hint: str | None, coordinate_key: str) -> str:
    if record.station_id:
        return record.station_id
    if key_hint:
        return key_hint
    if record.entity_id:
        match = _ENTITY_STATION_RE.search(record.entity_id)
        if match:
            return match.group(1)
    if record.sensor_id:
        match = _SENSOR_DEVICE_RE.search(record.sensor_id)
        if match:
            return match.group(1)
    return f"loc-{coordinate_key}"


def _friendly_name(record: RawStationRecord, station_id: str, coordinate: Coordinate) -> str | None:
    """Display name for a record that does not carry one."""
    sensor = record.sensor_id or record.entity_id or ""
    if "ExternalMqttSource" in sensor:
        # 'hieu-mqtt-1764992353' -> 'HIEU MQTT'
        prefix = station_id.split("-")[:-1]
        return " ".join(part.upper() for part in prefix) or station_id.upper()
    if "ExternalHttpSource" in sensor:
        return station_id.upper().replace("-", " ")
    if ":" in sensor:
        return sensor.rsplit(":", 1)[-1].upper()
    if station_id.startswith("loc-"):
        return f"Station {round(coordinate.lat, 2)}"
    return None


def normalize_record(
    raw: Any,
    *,
    key_hint: str | None = None,
    now: datetime,
) -> tuple[StationReading, bool]:
    """Normalize one raw record.

    Returns the reading and whether its timestamp fell back to *now*.
    Raises :class:`AirHubNormalizationError` when the record is not an
    object or has no resolvable coordinate.
    """
    if not isinstance(raw, dict):
        raise AirHubNormalizationError(f"record is {type(raw).__name__}, expected an object")
    try:
        record = RawStationRecord.model_validate(raw)
    except ValidationError as exc:
        raise AirHubNormalizationError(f"record failed validation: {exc}") from exc

    coordinate = record.resolve_coordinate()
    if coordinate is None:
        raise AirHubNormalizationError("record has no resolvable coordinate")

    observed_at = record.observed_at or record.timestamp
    used_fallback = observed_at is None
    if observed_at is None:
        observed_at = now

    aqi = record.aqi if record.aqi is not None else aqi_from_pm25(record.pm25)
    station_id = _resolve_station_id(record, key_hint, coordinate.key)

    reading = StationReading(
        station_id=station_id,
        coordinate=coordinate,
        observed_at=observed_at,
        aqi=aqi,
        **record.pollutants(),
        sensor_id=record.sensor_id,
        entity_id=record.entity_id,
        name=record.name or _friendly_name(record, station_id, coordinate),
        source_type=parse_source_tag(record.source_tag),
        raw=record.raw,
    )
    return reading, used_fallback


def normalize_snapshot(
    payload: Any,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> NormalizationResult:
    """Normalize a whole snapshot payload of either supported shape."""
    result = NormalizationResult()
    now = clock()
    for key_hint, raw in iter_snapshot_records(payload):
        try:
            reading, used_fallback = normalize_record(raw, key_hint=key_hint, now=now)
        except AirHubNormalizationError as exc:
            result.dropped += 1
            _logger.debug("Dropped record key=%s: %s", key_hint, exc)
            continue
        if used_fallback:
            result.fallback_timestamps += 1
        result.readings.append(reading)

    if result.dropped:
        _logger.warning("Dropped %d malformed record(s) during normalization", result.dropped)
    if result.fallback_timestamps:
        _logger.warning(
            "%d reading(s) had no observation timestamp; using ingestion time",
            result.fallback_timestamps,
        )
    return result
