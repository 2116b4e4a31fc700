#!/usr/bin/env python3
"""Watch the air quality hub against a live backend.

Starts the hub, subscribes to it, and prints every published snapshot:
connection status, merged station readings, alerts and the chart window.

Usage
-----
Point the hub at a backend and run::

    export AIRHUB_BASE_URL="http://localhost:5182"
    python scripts/watch_hub.py

Options::

    --interval SECONDS   Poll interval (default: AIRHUB_POLL_INTERVAL or 30)
    --once               Fetch one snapshot, print it and exit
    --json               Output as machine-readable JSON
    --no-cache           Do not load or persist the chart window
    --history STATION    Print the last hour of history for STATION and exit
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from airhub import AirQualityHub, HubConfig, HubSnapshot, StationReading  # noqa: E402

# ── helpers ──────────────────────────────────────────────────


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _fmt(value: float | None) -> str:
    return "-" if value is None else f"{value:g}"


def _reading_line(reading: StationReading) -> str:
    label = reading.name or reading.station_id
    source = reading.source_type.value if reading.source_type else "?"
    return (
        f"  {label:<28} {reading.key:<24} aqi={_fmt(reading.aqi):<6} pm25={_fmt(reading.pm25):<6} "
        f"{source:<17} {reading.observed_at.isoformat()}"
    )


def _snapshot_text(snapshot: HubSnapshot) -> str:
    out: list[str] = []
    status = "loading" if snapshot.is_loading else ("connected" if snapshot.is_connected else "disconnected")
    out.append(_section(f"snapshot v{snapshot.version} ({status})"))
    if snapshot.error:
        out.append(f"  error     : {snapshot.error} (failures: {snapshot.consecutive_failures})")
    out.append(f"  stations  : {len(snapshot.latest_data)}")
    out.append(f"  avg aqi   : {_fmt(snapshot.average_aqi)}")
    counts = ", ".join(f"{source.value}={count}" for source, count in sorted(snapshot.source_counts.items()))
    out.append(f"  sources   : {counts or '-'}")
    out.extend(_reading_line(reading) for reading in snapshot.readings)
    if snapshot.alerts:
        out.append("  alerts:")
        out.extend(f"    [{alert.severity.label}] {alert.message}" for alert in snapshot.alerts)
    out.append(f"  chart     : {len(snapshot.chart)} point(s)")
    return "\n".join(out)


def _snapshot_json(snapshot: HubSnapshot) -> str:
    payload: dict[str, Any] = {
        "version": snapshot.version,
        "is_loading": snapshot.is_loading,
        "is_connected": snapshot.is_connected,
        "error": snapshot.error,
        "latest_data": {
            key: reading.model_dump(mode="json", exclude={"raw"}) for key, reading in snapshot.latest_data.items()
        },
        "alerts": [alert.model_dump(mode="json") for alert in snapshot.alerts],
        "chart": [point.model_dump(mode="json") for point in snapshot.chart],
    }
    return json.dumps(payload, ensure_ascii=False)


def _print_snapshot(snapshot: HubSnapshot, *, json_mode: bool) -> None:
    print(_snapshot_json(snapshot) if json_mode else _snapshot_text(snapshot), flush=True)


async def _print_history(hub: AirQualityHub, station_id: str) -> None:
    end = datetime.now(UTC)
    readings = await hub.get_history(station_id, end - timedelta(hours=1), end)
    print(_section(f"history {station_id} ({len(readings)} reading(s))"))
    for reading in readings:
        print(_reading_line(reading))


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Print every snapshot the air quality hub publishes.",
    )
    parser.add_argument("--interval", type=float, help="Poll interval in seconds")
    parser.add_argument("--once", action="store_true", help="Fetch one snapshot and exit")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--no-cache", action="store_true", help="Do not load or persist the chart window")
    parser.add_argument("--history", metavar="STATION", help="Print the last hour of history for STATION and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {}
    if args.interval is not None:
        overrides["poll_interval"] = args.interval
    if args.no_cache:
        overrides["cache_enabled"] = False
    config = HubConfig.from_env(**overrides)

    async with AirQualityHub(config) as hub:
        if args.history:
            await _print_history(hub, args.history)
            return
        if args.once:
            _print_snapshot(await hub.refresh(), json_mode=args.json_mode)
            return

        hub.subscribe(lambda snapshot: _print_snapshot(snapshot, json_mode=args.json_mode), replay=False)
        hub.start()
        try:
            await asyncio.Event().wait()
        finally:
            await hub.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
