"""Data models for the air quality hub."""

from airhub.models.alert import Alert
from airhub.models.chart import CachedWindow, ChartPoint
from airhub.models.reading import POLLUTANT_FIELDS, Coordinate, RawStationRecord, SourceType, StationReading

__all__ = [
    "Alert",
    "CachedWindow",
    "ChartPoint",
    "Coordinate",
    "POLLUTANT_FIELDS",
    "RawStationRecord",
    "SourceType",
    "StationReading",
]
