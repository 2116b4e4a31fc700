"""Normalization helpers.

Centralizes defensive parsing and the snapshot shape adapter.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from typing import Any

_logger = logging.getLogger(__name__)


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    if isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def unwrap_value(value: Any) -> Any:
    """Return the ``value`` member of an NGSI-LD property object.

    Plain values are returned unchanged. Relationship objects carry their
    target in ``object`` instead of ``value``.
    """

    if isinstance(value, Mapping):
        if "value" in value:
            return value["value"]
        if "object" in value:
            return value["object"]
    return value


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize numeric timestamps to epoch seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(ts) or ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, epoch seconds/ms, or datetime into a UTC datetime.

    Returns ``None`` for anything that cannot be interpreted.
    """

    value = unwrap_value(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)

    seconds = normalize_timestamp_seconds(value)
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


def iter_snapshot_records(payload: Any) -> Iterator[tuple[str | None, Any]]:
    """Yield ``(key_hint, record)`` pairs from either snapshot shape.

    The backend has returned both an array of per-station objects and an
    object keyed by station id. Both become the same sequence here; for the
    keyed shape the key is passed along as a station id hint.
    """

    if isinstance(payload, (list, tuple)):
        for record in payload:
            yield None, record
        return
    if isinstance(payload, Mapping):
        for key, record in payload.items():
            yield safe_str(key), record
        return
    if payload is not None:
        _logger.warning("Ignoring snapshot payload of unsupported type %s", type(payload).__name__)
