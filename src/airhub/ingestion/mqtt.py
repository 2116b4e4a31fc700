"""Broker ingestion helpers.

This module translates decoded broker messages into normalized readings.
Readings that carry no explicit provenance tag are marked broker-fed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from airhub.ingestion.snapshot import NormalizationResult, normalize_snapshot
from airhub.models.reading import SourceType

# Keys that mark a bare object as a single station record rather than a
# snapshot keyed by station id.
_RECORD_KEYS = frozenset({"lat", "latitude", "lng", "lon", "longitude", "location", "stationId", "id"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_snapshot(payload: Any) -> Any:
    if isinstance(payload, dict) and _RECORD_KEYS.intersection(payload):
        return [payload]
    return payload


def readings_from_broker_payload(
    payload: Any,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> NormalizationResult:
    """Normalize one broker message.

    A message may hold a single record, an array of records, or an object
    keyed by station id.
    """
    result = normalize_snapshot(_as_snapshot(payload), clock=clock)
    result.readings = [
        reading if reading.source_type is not None else reading.with_source(SourceType.BROKER_FED)
        for reading in result.readings
    ]
    return result
