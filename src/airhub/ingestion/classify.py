"""Provenance classification.

An explicit backend tag always wins. Untagged readings go through an
ordered rule chain; the first matching rule decides. Patterns overlap, so
the order of :data:`DEFAULT_RULES` is part of the behaviour.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from airhub.models.reading import SourceType, StationReading

_logger = logging.getLogger(__name__)

# Tags seen in backend payloads, including the legacy spellings.
_SOURCE_TAG_ALIASES: dict[str, SourceType] = {
    "official": SourceType.OFFICIAL,
    "broker-fed": SourceType.BROKER_FED,
    "mqtt": SourceType.BROKER_FED,
    "external-mqtt": SourceType.BROKER_FED,
    "external-api-fed": SourceType.EXTERNAL_API_FED,
    "external-http": SourceType.EXTERNAL_API_FED,
    "external-api": SourceType.EXTERNAL_API_FED,
    "unknown": SourceType.UNKNOWN,
}

_OFFICIAL_DEVICE_RE = re.compile(r"urn:ngsi-ld:device:(mq\d+|sensor)", re.IGNORECASE)


def parse_source_tag(tag: str | None) -> SourceType | None:
    """Map an explicit backend tag to a :class:`SourceType`; ``None`` if unrecognized."""
    if tag is None:
        return None
    return _SOURCE_TAG_ALIASES.get(tag.strip().lower())


@dataclass(frozen=True)
class ClassificationRule:
    """One ``(predicate, tag)`` step of the rule chain."""

    name: str
    predicate: Callable[[StationReading], bool]
    source_type: SourceType


def _ids(reading: StationReading) -> tuple[str, str]:
    entity = (reading.entity_id or reading.station_id or "").lower()
    sensor = (reading.sensor_id or reading.entity_id or "").lower()
    return entity, sensor


def is_broker_feed(reading: StationReading) -> bool:
    entity, sensor = _ids(reading)
    return "mqtt" in entity or "mqtt" in sensor


def is_official_device(reading: StationReading) -> bool:
    _, sensor = _ids(reading)
    return bool(_OFFICIAL_DEVICE_RE.search(sensor))


def is_external_station(reading: StationReading) -> bool:
    entity, sensor = _ids(reading)
    if "mq" in sensor:
        return False
    return "station-" in entity or "externalhttpsource" in sensor


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("broker-feed", is_broker_feed, SourceType.BROKER_FED),
    ClassificationRule("official-device", is_official_device, SourceType.OFFICIAL),
    ClassificationRule("external-station", is_external_station, SourceType.EXTERNAL_API_FED),
)


class SourceClassifier:
    """Assigns a provenance tag to every reading."""

    def __init__(
        self,
        *,
        rules: Sequence[ClassificationRule] = DEFAULT_RULES,
        fallback: SourceType = SourceType.OFFICIAL,
    ) -> None:
        self._rules = tuple(rules)
        self._fallback = fallback

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def source_for(self, reading: StationReading) -> SourceType:
        if reading.source_type is not None:
            return reading.source_type
        for rule in self._rules:
            if rule.predicate(reading):
                return rule.source_type
        _logger.debug(
            "No classification rule matched station=%s sensor=%s; using %s",
            reading.station_id,
            reading.sensor_id,
            self._fallback,
        )
        return self._fallback

    def classify(self, reading: StationReading) -> StationReading:
        """Return *reading* with ``source_type`` populated."""
        if reading.source_type is not None:
            return reading
        return reading.with_source(self.source_for(reading))

    def classify_all(self, readings: Iterable[StationReading]) -> list[StationReading]:
        return [self.classify(reading) for reading in readings]
