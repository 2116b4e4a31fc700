"""Alert evaluation over merge results."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence

from airhub._constants import DEFAULT_ALERT_CAP, DEFAULT_ALERT_THRESHOLDS
from airhub.aqi import AqiBand, band_for
from airhub.models.alert import Alert
from airhub.models.reading import StationReading
from airhub.state.store import ReadingChange

_logger = logging.getLogger(__name__)


def _station_label(reading: StationReading) -> str:
    return reading.name or reading.station_id


def build_alert_message(reading: StationReading, band: AqiBand, previous_band: AqiBand | None) -> str:
    label = _station_label(reading)
    aqi = round(reading.aqi or 0)
    if previous_band is not None and band > previous_band:
        return f"{label}: air quality worsened from {previous_band.label} to {band.label} (AQI {aqi})"
    return f"{label}: air quality is {band.label} (AQI {aqi})"


class AlertEvaluator:
    """Derives alerts from merge changes and keeps a bounded, newest-first log.

    An alert is raised when a changed reading is above the MODERATE band,
    or when its band rose compared to the previous reading at the same
    coordinate.
    """

    def __init__(
        self,
        *,
        cap: int = DEFAULT_ALERT_CAP,
        thresholds: Sequence[float] = DEFAULT_ALERT_THRESHOLDS,
    ) -> None:
        if cap < 1:
            raise ValueError(f"cap must be at least 1, got {cap}")
        self._thresholds = tuple(thresholds)
        self._log: deque[Alert] = deque(maxlen=cap)

    @property
    def cap(self) -> int:
        return self._log.maxlen or 0

    @property
    def alerts(self) -> tuple[Alert, ...]:
        """Alerts, newest first."""
        return tuple(self._log)

    def band(self, aqi: float) -> AqiBand:
        return band_for(aqi, self._thresholds)

    def evaluate(self, changes: Iterable[ReadingChange]) -> list[Alert]:
        """Evaluate changed readings and record any new alerts.

        Returns the alerts raised by this call, in evaluation order.
        """
        raised: list[Alert] = []
        for change in changes:
            reading = change.current
            if reading.aqi is None:
                continue
            band = self.band(reading.aqi)
            previous_band: AqiBand | None = None
            if change.previous is not None and change.previous.aqi is not None:
                previous_band = self.band(change.previous.aqi)

            escalated = previous_band is not None and band > previous_band
            if band <= AqiBand.MODERATE and not escalated:
                continue

            alert = Alert(
                station_id=reading.station_id,
                coordinate=reading.coordinate,
                aqi=reading.aqi,
                severity=band,
                message=build_alert_message(reading, band, previous_band),
                timestamp=reading.observed_at,
            )
            self._log.appendleft(alert)
            raised.append(alert)

        if raised:
            _logger.debug("Raised %d alert(s); log holds %d", len(raised), len(self._log))
        return raised

    def clear(self) -> None:
        self._log.clear()
