"""Alert model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from airhub.aqi import AqiBand
from airhub.models.reading import Coordinate


class Alert(BaseModel):
    """Severity alert raised for one station reading.

    Parameters
    ----------
    station_id : str
        Station that triggered the alert.
    coordinate : Coordinate
        Station position.
    aqi : float
        AQI value that triggered the alert.
    severity : AqiBand
        Band of ``aqi``.
    message : str
        Human-readable alert text.
    timestamp : datetime
        Observation time of the triggering reading.
    """

    model_config = ConfigDict(frozen=True)

    station_id: str
    coordinate: Coordinate
    aqi: float
    severity: AqiBand
    message: str
    timestamp: datetime
