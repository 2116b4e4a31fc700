"""Station reading models.

:class:`RawStationRecord` is the tolerant parsing boundary for whatever the
backend (or a broker feed) sends for one station; :class:`StationReading` is
the canonical value every downstream stage works with.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from airhub._constants import COORDINATE_KEY_PRECISION
from airhub.ingestion.normalize import parse_timestamp, safe_float, safe_str, unwrap_value

# Placeholder strings some feeds use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})

POLLUTANT_FIELDS: tuple[str, ...] = ("pm25", "pm10", "o3", "no2", "so2", "co")


class SourceType(StrEnum):
    """Provenance of a reading."""

    OFFICIAL = "official"
    BROKER_FED = "broker-fed"
    EXTERNAL_API_FED = "external-api-fed"
    UNKNOWN = "unknown"


def _key_part(value: float) -> str:
    # Adding 0.0 folds -0.0 into 0.0 so both print the same.
    return repr(round(value, COORDINATE_KEY_PRECISION) + 0.0)


class Coordinate(BaseModel):
    """WGS84 position of a station."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)

    @property
    def key(self) -> str:
        """Dedup key, ``"lat,lng"``."""
        return f"{_key_part(self.lat)},{_key_part(self.lng)}"


class StationReading(BaseModel):
    """One observation for one location at one instant.

    Parameters
    ----------
    station_id : str
        Logical station identifier; synthesized from the coordinate when
        the payload carries none.
    coordinate : Coordinate
        Position; its :attr:`Coordinate.key` is the dedup key.
    observed_at : datetime
        UTC observation time, or ingestion time when the payload has none.
    aqi : float or None
        Air Quality Index.
    pm25, pm10, o3, no2, so2, co : float or None
        Pollutant concentrations.
    source_type : SourceType or None
        Provenance tag; always set once the reading has been classified.
    sensor_id : str or None
        Sensor/device identifier, used by the classifier.
    entity_id : str or None
        Backend entity identifier, used by the classifier.
    name : str or None
        Display name, if the payload has one.
    raw : dict
        Original payload, kept for display only.
    """

    model_config = ConfigDict(frozen=True)

    station_id: str
    coordinate: Coordinate
    observed_at: datetime
    aqi: float | None = None
    pm25: float | None = None
    pm10: float | None = None
    o3: float | None = None
    no2: float | None = None
    so2: float | None = None
    co: float | None = None
    source_type: SourceType | None = None
    sensor_id: str | None = None
    entity_id: str | None = None
    name: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.coordinate.key

    def with_source(self, source_type: SourceType) -> StationReading:
        return self.model_copy(update={"source_type": source_type})


class RawStationRecord(BaseModel):
    """Tolerant view over one raw station record.

    Accepts flat records as well as NGSI-LD entities whose attributes are
    property objects (``{"value": ...}``) or relationships
    (``{"object": ...}``). Unparseable numbers become ``None``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    station_id: str | None = Field(default=None, validation_alias=AliasChoices("stationId", "station_id", "station"))
    entity_id: str | None = Field(default=None, validation_alias=AliasChoices("id", "entityId", "entity_id"))
    sensor_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sosa:madeBySensor", "madeBySensor", "sensorId", "sensor_id", "sensor", "deviceId"),
    )
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "stationName"))
    source_tag: str | None = Field(default=None, validation_alias=AliasChoices("sourceType", "source_type"))
    lat: float | None = Field(default=None, validation_alias=AliasChoices("lat", "latitude"))
    lng: float | None = Field(default=None, validation_alias=AliasChoices("lng", "lon", "longitude"))
    location: Any = None
    observed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("observedAt", "dateObserved", "observed_at"),
    )
    timestamp: datetime | None = Field(default=None, validation_alias=AliasChoices("timestamp", "time"))
    aqi: float | None = Field(default=None, validation_alias=AliasChoices("aqi", "airQualityIndex", "AQI"))
    pm25: float | None = Field(default=None, validation_alias=AliasChoices("pm25", "PM25", "pm2_5", "PM2.5"))
    pm10: float | None = Field(default=None, validation_alias=AliasChoices("pm10", "PM10"))
    o3: float | None = Field(default=None, validation_alias=AliasChoices("o3", "O3"))
    no2: float | None = Field(default=None, validation_alias=AliasChoices("no2", "NO2"))
    so2: float | None = Field(default=None, validation_alias=AliasChoices("so2", "SO2"))
    co: float | None = Field(default=None, validation_alias=AliasChoices("co", "CO"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_properties(cls, values: Any) -> Any:
        """Unwrap NGSI-LD attribute objects, drop sentinels, stash the raw payload."""
        if not isinstance(values, Mapping):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            value = unwrap_value(value)
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    @field_validator("lat", "lng", "aqi", "pm25", "pm10", "o3", "no2", "so2", "co", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("station_id", "entity_id", "sensor_id", "name", "source_tag", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str | None:
        if isinstance(value, (Mapping, list, tuple)):
            return None
        return safe_str(value)

    @field_validator("observed_at", "timestamp", mode="before")
    @classmethod
    def _coerce_timestamps(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    def resolve_coordinate(self) -> Coordinate | None:
        """Resolve the station position.

        Order: explicit ``lat``/``lng`` (top level, then under ``location``),
        then a GeoJSON ``[lng, lat]`` point under ``location``. Returns
        ``None`` when nothing usable is present.
        """
        candidates: list[tuple[float | None, float | None]] = [(self.lat, self.lng)]

        location = self.location
        if isinstance(location, Mapping):
            candidates.append(
                (
                    safe_float(unwrap_value(location.get("lat", location.get("latitude")))),
                    safe_float(unwrap_value(location.get("lng", location.get("lon", location.get("longitude"))))),
                )
            )
            coords = location.get("coordinates")
            if isinstance(coords, (list, tuple)) and len(coords) >= 2:
                candidates.append((safe_float(coords[1]), safe_float(coords[0])))
        elif isinstance(location, (list, tuple)) and len(location) >= 2:
            candidates.append((safe_float(location[1]), safe_float(location[0])))

        for lat, lng in candidates:
            if lat is None or lng is None:
                continue
            try:
                return Coordinate(lat=lat, lng=lng)
            except ValidationError:
                continue
        return None

    def pollutants(self) -> dict[str, float | None]:
        return {name: getattr(self, name) for name in POLLUTANT_FIELDS}
