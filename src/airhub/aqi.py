"""AQI severity bands and PM2.5 → AQI conversion."""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence

from airhub._constants import DEFAULT_ALERT_THRESHOLDS, PM25_BREAKPOINTS


class AqiBand(enum.IntEnum):
    """Severity band of an AQI value, ordered by increasing severity."""

    GOOD = 0
    MODERATE = 1
    UNHEALTHY_FOR_SENSITIVE = 2
    UNHEALTHY = 3

    @property
    def label(self) -> str:
        return _BAND_LABELS[self]


_BAND_LABELS: dict[AqiBand, str] = {
    AqiBand.GOOD: "Good",
    AqiBand.MODERATE: "Moderate",
    AqiBand.UNHEALTHY_FOR_SENSITIVE: "Unhealthy for sensitive groups",
    AqiBand.UNHEALTHY: "Unhealthy",
}


def band_for(aqi: float, thresholds: Sequence[float] = DEFAULT_ALERT_THRESHOLDS) -> AqiBand:
    """Return the band for *aqi*.

    A value strictly above the n-th cut point lands in band n+1, so with
    the default cut points 50 is GOOD and 50.5 is MODERATE.
    """
    band = AqiBand.GOOD
    for index, cut in enumerate(thresholds, start=1):
        if aqi > cut:
            band = AqiBand(index)
    return band


def aqi_from_pm25(pm25: float | None) -> float | None:
    """US EPA AQI from a PM2.5 concentration in µg/m³.

    The concentration is truncated to one decimal as the EPA does, then
    interpolated inside its breakpoint bracket. Concentrations above the
    table extrapolate along the highest bracket.
    Returns ``None`` for missing or negative input.
    """
    if pm25 is None or pm25 < 0:
        return None
    pm25 = math.floor(pm25 * 10 + 1e-9) / 10
    c_low, c_high, aqi_low, aqi_high = PM25_BREAKPOINTS[-1]
    for bracket in PM25_BREAKPOINTS:
        if bracket[0] <= pm25 <= bracket[1]:
            c_low, c_high, aqi_low, aqi_high = bracket
            break
    return float(round((aqi_high - aqi_low) / (c_high - c_low) * (pm25 - c_low) + aqi_low))
