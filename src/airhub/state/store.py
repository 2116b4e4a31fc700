"""Deterministic in-memory merged state.

This is the only component allowed to merge classified readings.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from airhub.models.reading import StationReading
from airhub.state.policy import should_replace


@dataclass(frozen=True, slots=True)
class ReadingChange:
    """A coordinate whose stored reading changed during a merge."""

    key: str
    previous: StationReading | None
    current: StationReading


class MergeEngine:
    """Latest reading per coordinate key.

    Given the same sequence of batches, the engine always ends in the same
    state. Re-merging a batch is a no-op, and the stored ``observed_at`` of
    a key never moves backwards.
    """

    def __init__(self) -> None:
        self._state: dict[str, StationReading] = {}

    def __len__(self) -> int:
        return len(self._state)

    def __contains__(self, key: object) -> bool:
        return key in self._state

    def get(self, key: str) -> StationReading | None:
        return self._state.get(key)

    def merge(self, readings: Iterable[StationReading]) -> list[ReadingChange]:
        """Merge a batch of classified readings and return what changed."""
        changes: list[ReadingChange] = []
        for reading in readings:
            key = reading.key
            existing = self._state.get(key)
            if not should_replace(existing, reading):
                continue
            self._state[key] = reading
            changes.append(ReadingChange(key=key, previous=existing, current=reading))
        return changes

    def view(self) -> Mapping[str, StationReading]:
        """Read-only copy of the current state.

        Readings are frozen, so a shallow copy behind a mapping proxy cannot
        be mutated by consumers and does not change after later merges.
        """
        return MappingProxyType(dict(self._state))

    def clear(self) -> None:
        self._state.clear()
