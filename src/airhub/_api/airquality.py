"""Air quality endpoints of the backend API.

The backend returns normalized-but-unclassified station readings, either
as an array or as an object keyed by station id. These helpers return the
decoded payload unchanged; shape handling belongs to the normalizer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from airhub._transport import Transport
from airhub.config import HubConfig


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


async def fetch_latest_snapshot(config: HubConfig, transport: Transport) -> Any:
    """Fetch the current reading of every station."""
    return await transport.get_json(config.snapshot_endpoint)


async def fetch_history(
    config: HubConfig,
    transport: Transport,
    *,
    start: datetime,
    end: datetime,
    station_id: str | None = None,
) -> Any:
    """Fetch readings observed between *start* and *end*."""
    params = {"from": _iso(start), "to": _iso(end)}
    if station_id:
        params["stationId"] = station_id
    return await transport.get_json(config.history_endpoint, params)
