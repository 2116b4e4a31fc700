"""Chart window models persisted by the session cache."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from airhub._constants import CHART_SCHEMA_VERSION


class ChartPoint(BaseModel):
    """One aggregated point of the rolling trend chart.

    ``aqi`` and the pollutant fields are means across the stations that
    reported a value; ``stations`` maps station id to its AQI.
    """

    model_config = ConfigDict(frozen=True)

    time: str
    timestamp: int = Field(..., description="Epoch milliseconds of the newest observation merged in the cycle")
    aqi: float | None = None
    pm25: float | None = None
    pm10: float | None = None
    o3: float | None = None
    no2: float | None = None
    so2: float | None = None
    co: float | None = None
    stations: dict[str, float | None] = Field(default_factory=dict)


class CachedWindow(BaseModel):
    """Serialized form of the chart window."""

    model_config = ConfigDict(frozen=True)

    version: int = CHART_SCHEMA_VERSION
    points: tuple[ChartPoint, ...] = ()
