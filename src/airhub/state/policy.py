"""Deterministic merge policy.

This module contains *no* payload parsing. The ingestion boundary is
responsible for producing canonical readings with timestamps.
"""

from __future__ import annotations

from airhub.models.reading import StationReading


def should_replace(existing: StationReading | None, incoming: StationReading) -> bool:
    """Decide whether *incoming* replaces the stored reading for its coordinate.

    Policy:
    - No stored reading: accept.
    - Strictly newer observation: accept.
    - Equal or older observation: reject, so the first-seen reading wins ties.
    """
    if existing is None:
        return True
    return incoming.observed_at > existing.observed_at
