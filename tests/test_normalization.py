from __future__ import annotations

from datetime import UTC, datetime

from airhub.aqi import aqi_from_pm25
from airhub.ingestion.normalize import iter_snapshot_records, parse_timestamp, safe_float
from airhub.ingestion.snapshot import normalize_record, normalize_snapshot
from airhub.models.reading import SourceType

_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _clock() -> datetime:
    return _NOW


def _flat(station_id: str, lat: float, lng: float, **extra: object) -> dict[str, object]:
    return {"stationId": station_id, "lat": lat, "lng": lng, "observedAt": "2026-01-01T11:00:00Z", **extra}


def test_array_and_keyed_shapes_normalize_identically() -> None:
    array_payload = [
        _flat("hn-01", 21.0285, 105.8542, aqi=42),
        _flat("hn-02", 21.0301, 105.8402, aqi=77),
    ]
    keyed_payload = {
        "hn-01": {"lat": 21.0285, "lng": 105.8542, "observedAt": "2026-01-01T11:00:00Z", "aqi": 42},
        "hn-02": {"lat": 21.0301, "lng": 105.8402, "observedAt": "2026-01-01T11:00:00Z", "aqi": 77},
    }

    from_array = normalize_snapshot(array_payload, clock=_clock)
    from_keyed = normalize_snapshot(keyed_payload, clock=_clock)

    def summary(readings: list) -> list[tuple[str, str, float | None]]:
        return sorted((r.station_id, r.key, r.aqi) for r in readings)

    assert summary(from_array.readings) == summary(from_keyed.readings)
    assert summary(from_array.readings) == [
        ("hn-01", "21.0285,105.8542", 42.0),
        ("hn-02", "21.0301,105.8402", 77.0),
    ]


def test_ngsi_ld_entity_is_unwrapped() -> None:
    entity = {
        "id": "urn:ngsi-ld:AirQualityObserved:hanoi-01",
        "type": "AirQualityObserved",
        "location": {
            "type": "GeoProperty",
            "value": {"type": "Point", "coordinates": [105.8542, 21.0285]},
        },
        "dateObserved": {"type": "Property", "value": "2026-01-01T10:30:00Z"},
        "pm25": {"type": "Property", "value": 35.2},
        "pm10": {"type": "Property", "value": "48.1"},
        "sosa:madeBySensor": {"type": "Relationship", "object": "urn:ngsi-ld:Device:mq135-01"},
    }

    result = normalize_snapshot([entity], clock=_clock)

    assert result.dropped == 0
    [reading] = result.readings
    assert reading.station_id == "hanoi-01"
    assert reading.coordinate.lat == 21.0285
    assert reading.coordinate.lng == 105.8542
    assert reading.observed_at == datetime(2026, 1, 1, 10, 30, tzinfo=UTC)
    assert reading.pm25 == 35.2
    assert reading.pm10 == 48.1
    assert reading.sensor_id == "urn:ngsi-ld:Device:mq135-01"
    assert reading.entity_id == "urn:ngsi-ld:AirQualityObserved:hanoi-01"
    # No explicit AQI: derived from PM2.5.
    assert reading.aqi == 100.0
    assert reading.raw["type"] == "AirQualityObserved"


def test_geojson_location_without_property_wrapper() -> None:
    record = {"stationId": "s", "location": {"type": "Point", "coordinates": [105.0, 21.0]}, "aqi": 10}

    [reading] = normalize_snapshot([record], clock=_clock).readings

    assert reading.key == "21.0,105.0"


def test_unresolvable_records_are_dropped_and_counted() -> None:
    payload = [
        _flat("ok", 21.0, 105.0, aqi=10),
        {"stationId": "no-coordinate", "aqi": 10},
        {"stationId": "out-of-range", "lat": 200.0, "lng": 105.0},
        "not-an-object",
        None,
    ]

    result = normalize_snapshot(payload, clock=_clock)

    assert [r.station_id for r in result.readings] == ["ok"]
    assert result.dropped == 4


def test_missing_timestamp_falls_back_to_ingestion_time() -> None:
    result = normalize_snapshot([{"stationId": "s", "lat": 21.0, "lng": 105.0, "aqi": 12}], clock=_clock)

    [reading] = result.readings
    assert reading.observed_at == _NOW
    assert result.fallback_timestamps == 1


def test_observation_timestamp_wins_over_generic_timestamp() -> None:
    record = {
        "stationId": "s",
        "lat": 21.0,
        "lng": 105.0,
        "timestamp": 1767225600000,
        "dateObserved": "2026-01-01T06:00:00+07:00",
    }

    reading, used_fallback = normalize_record(record, now=_NOW)

    assert not used_fallback
    assert reading.observed_at == datetime(2025, 12, 31, 23, 0, tzinfo=UTC)


def test_epoch_millisecond_timestamp() -> None:
    reading, _ = normalize_record({"stationId": "s", "lat": 1, "lng": 2, "timestamp": 1767225600000}, now=_NOW)

    assert reading.observed_at == datetime(2026, 1, 1, tzinfo=UTC)


def test_numeric_fields_parse_defensively() -> None:
    record = {
        "stationId": "s",
        "lat": "21.0285",
        "lng": "105.8542",
        "aqi": "n/a",
        "pm25": "--",
        "pm10": float("nan"),
        "o3": True,
        "no2": "12.5",
        "so2": "",
        "co": {"value": "0.4"},
    }

    reading, _ = normalize_record(record, now=_NOW)

    assert reading.key == "21.0285,105.8542"
    assert reading.aqi is None
    assert reading.pm25 is None
    assert reading.pm10 is None
    assert reading.o3 is None
    assert reading.no2 == 12.5
    assert reading.so2 is None
    assert reading.co == 0.4


def test_station_id_resolution_order() -> None:
    by_hint = normalize_snapshot({"hint-1": {"lat": 1.0, "lng": 2.0}}, clock=_clock).readings[0]
    by_entity = normalize_snapshot(
        [{"id": "urn:ngsi-ld:AirQualityObserved:station-9", "lat": 1.0, "lng": 2.0}], clock=_clock
    ).readings[0]
    by_sensor = normalize_snapshot(
        [{"sensorId": "urn:ngsi-ld:Device:mq7-3", "lat": 1.0, "lng": 2.0}], clock=_clock
    ).readings[0]
    synthesized = normalize_snapshot([{"lat": 1.5, "lng": -2.25}], clock=_clock).readings[0]

    assert by_hint.station_id == "hint-1"
    assert by_entity.station_id == "station-9"
    assert by_sensor.station_id == "mq7-3"
    assert synthesized.station_id == "loc-1.5,-2.25"


def test_missing_name_is_generated_from_ids() -> None:
    mqtt, http, device, entity_only, unnamed, plain, named = normalize_snapshot(
        [
            {"stationId": "hieu-mqtt-1764992353", "sensorId": "urn:ExternalMqttSource:hieu", "lat": 1.0, "lng": 2.0},
            {"stationId": "station-oceanpark", "sensorId": "urn:ExternalHttpSource:aqicn", "lat": 2.0, "lng": 2.0},
            {"stationId": "hn-01", "sensorId": "urn:ngsi-ld:Device:mq135-01", "lat": 3.0, "lng": 2.0},
            {"id": "urn:ngsi-ld:AirQualityObserved:hanoi-01", "lat": 4.0, "lng": 2.0},
            {"lat": 21.0285, "lng": 105.8542},
            {"stationId": "hn-02", "lat": 6.0, "lng": 2.0},
            {"stationId": "hn-03", "name": "Hoan Kiem", "sensorId": "urn:ngsi-ld:Device:mq7-1", "lat": 7.0, "lng": 2.0},
        ],
        clock=_clock,
    ).readings

    assert mqtt.name == "HIEU MQTT"
    assert http.name == "STATION OCEANPARK"
    assert device.name == "MQ135-01"
    assert entity_only.name == "HANOI-01"
    assert unnamed.name == "Station 21.03"
    assert plain.name is None
    assert named.name == "Hoan Kiem"



def test_explicit_source_tag_is_parsed() -> None:
    [tagged, untagged] = normalize_snapshot(
        [
            _flat("a", 1.0, 2.0, sourceType="external-http"),
            _flat("b", 3.0, 4.0),
        ],
        clock=_clock,
    ).readings

    assert tagged.source_type is SourceType.EXTERNAL_API_FED
    assert untagged.source_type is None


def test_unsupported_payload_yields_nothing() -> None:
    assert list(iter_snapshot_records("garbage")) == []
    assert list(iter_snapshot_records(None)) == []
    assert normalize_snapshot(42, clock=_clock).readings == []


def test_safe_float_and_parse_timestamp_edge_cases() -> None:
    assert safe_float("1e3") == 1000.0
    assert safe_float(float("inf")) is None
    assert safe_float(False) is None
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(0) is None
    assert parse_timestamp("2026-01-01T00:00:00") == datetime(2026, 1, 1, tzinfo=UTC)


def test_aqi_from_pm25_breakpoints() -> None:
    assert aqi_from_pm25(None) is None
    assert aqi_from_pm25(-1.0) is None
    assert aqi_from_pm25(0.0) == 0.0
    assert aqi_from_pm25(12.0) == 50.0
    # Between brackets: truncated to 12.0 rather than jumping to the top bracket.
    assert aqi_from_pm25(12.05) == 50.0
    assert aqi_from_pm25(35.4) == 100.0
    assert aqi_from_pm25(55.5) == 151.0
