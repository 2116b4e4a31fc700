"""Hub configuration for airhub."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from airhub._constants import (
    BASE_URL,
    DEFAULT_ALERT_CAP,
    DEFAULT_ALERT_THRESHOLDS,
    DEFAULT_CACHE_EXPIRY,
    DEFAULT_CACHE_MAX_POINTS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    HISTORY_ENDPOINT,
    SNAPSHOT_ENDPOINT,
)
from airhub.exceptions import AirHubConfigError
from airhub.models.reading import SourceType


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_thresholds(value: str) -> tuple[float, ...]:
    try:
        return tuple(float(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise AirHubConfigError(f"AIRHUB_ALERT_THRESHOLDS must be comma-separated numbers, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class HubConfig:
    """Hub configuration.

    Parameters
    ----------
    base_url : str
        Backend API base URL.
    snapshot_endpoint : str
        Path returning the current reading of every station.
    history_endpoint : str
        Path returning readings for a station over a time range.
    request_timeout : float
        Total HTTP timeout per request, in seconds.
    poll_interval : float
        Seconds between periodic fetch cycles.
    alert_cap : int
        Number of alerts kept in the rolling alert log.
    alert_thresholds : tuple of float
        Ascending AQI cut points. An AQI strictly above the n-th cut
        point falls in band n+1.
    cache_enabled : bool
        Persist the rolling chart window between runs.
    cache_max_points : int
        Maximum number of chart points kept in the window.
    cache_expiry : float
        Age in seconds after which a persisted window is discarded on load.
    cache_dir : str or None
        Directory used for the persisted window. ``None`` uses the
        system temp directory.
    fallback_source_type : SourceType
        Provenance assigned when no classification rule matches.
    mqtt_enabled : bool
        Subscribe to a message broker for pushed readings.
    mqtt_broker_url : str or None
        Broker address, e.g. ``mqtts://broker.example.org:8883``.
    mqtt_topic : str
        Topic filter carrying JSON readings.
    mqtt_username, mqtt_password : str or None
        Broker credentials.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    base_url: str = BASE_URL
    snapshot_endpoint: str = SNAPSHOT_ENDPOINT
    history_endpoint: str = HISTORY_ENDPOINT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    alert_cap: int = DEFAULT_ALERT_CAP
    alert_thresholds: tuple[float, ...] = DEFAULT_ALERT_THRESHOLDS
    cache_enabled: bool = True
    cache_max_points: int = DEFAULT_CACHE_MAX_POINTS
    cache_expiry: float = DEFAULT_CACHE_EXPIRY
    cache_dir: str | None = None
    fallback_source_type: SourceType = SourceType.OFFICIAL
    mqtt_enabled: bool = False
    mqtt_broker_url: str | None = None
    mqtt_topic: str = "airquality/#"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 120

    def validate(self) -> None:
        """Raise :class:`AirHubConfigError` if the configuration is unusable."""
        if self.poll_interval <= 0:
            raise AirHubConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.request_timeout <= 0:
            raise AirHubConfigError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.alert_cap < 1:
            raise AirHubConfigError(f"alert_cap must be at least 1, got {self.alert_cap}")
        if self.cache_max_points < 1:
            raise AirHubConfigError(f"cache_max_points must be at least 1, got {self.cache_max_points}")
        if self.cache_expiry <= 0:
            raise AirHubConfigError(f"cache_expiry must be positive, got {self.cache_expiry}")
        thresholds = list(self.alert_thresholds)
        if len(thresholds) != 3 or thresholds != sorted(thresholds) or len(set(thresholds)) != 3:
            raise AirHubConfigError(f"alert_thresholds must be three ascending values, got {self.alert_thresholds}")
        if self.mqtt_enabled and not self.mqtt_broker_url:
            raise AirHubConfigError("mqtt_enabled requires mqtt_broker_url")

    @classmethod
    def from_env(cls, **overrides: Any) -> HubConfig:
        """Create configuration from ``AIRHUB_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "AIRHUB_BASE_URL": "base_url",
            "AIRHUB_SNAPSHOT_ENDPOINT": "snapshot_endpoint",
            "AIRHUB_HISTORY_ENDPOINT": "history_endpoint",
            "AIRHUB_CACHE_DIR": "cache_dir",
            "AIRHUB_MQTT_BROKER_URL": "mqtt_broker_url",
            "AIRHUB_MQTT_TOPIC": "mqtt_topic",
            "AIRHUB_MQTT_USERNAME": "mqtt_username",
            "AIRHUB_MQTT_PASSWORD": "mqtt_password",
        }
        _ENV_FLOAT_MAP = {
            "AIRHUB_REQUEST_TIMEOUT": "request_timeout",
            "AIRHUB_POLL_INTERVAL": "poll_interval",
            "AIRHUB_CACHE_EXPIRY": "cache_expiry",
        }
        _ENV_INT_MAP = {
            "AIRHUB_ALERT_CAP": "alert_cap",
            "AIRHUB_CACHE_MAX_POINTS": "cache_max_points",
            "AIRHUB_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
        except ValueError as exc:
            raise AirHubConfigError(f"Invalid numeric environment value: {exc}") from exc

        thresholds_env = env.get("AIRHUB_ALERT_THRESHOLDS")
        if thresholds_env is not None and "alert_thresholds" not in overrides:
            config_kwargs["alert_thresholds"] = _env_thresholds(thresholds_env)

        fallback_env = env.get("AIRHUB_FALLBACK_SOURCE_TYPE")
        if fallback_env is not None and "fallback_source_type" not in overrides:
            try:
                config_kwargs["fallback_source_type"] = SourceType(fallback_env.strip().lower())
            except ValueError as exc:
                raise AirHubConfigError(f"Unknown AIRHUB_FALLBACK_SOURCE_TYPE {fallback_env!r}") from exc

        if "cache_enabled" not in overrides:
            config_kwargs["cache_enabled"] = _env_bool(env.get("AIRHUB_CACHE_ENABLED"), True)
        if "mqtt_enabled" not in overrides:
            config_kwargs["mqtt_enabled"] = _env_bool(env.get("AIRHUB_MQTT_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
