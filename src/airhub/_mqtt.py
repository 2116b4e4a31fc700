"""Broker settings, payload decoding and the paho-mqtt subscription runtime."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from airhub.config import HubConfig
from airhub.exceptions import AirHubConfigError, AirHubError


@dataclass(frozen=True)
class BrokerSettings:
    """Broker connection details for a broker-fed reading subscription."""

    host: str
    port: int
    topic: str
    client_id: str
    use_tls: bool
    username: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class BrokerMessage:
    """Decoded JSON message received from the broker."""

    topic: str
    payload: Any


def _parse_broker(raw_broker: str) -> tuple[str, int, bool]:
    value = raw_broker.strip()
    if not value:
        raise ValueError("Broker value is empty")

    scheme = ""
    if "://" in value:
        scheme, value = value.split("://", 1)
    if "/" in value:
        value = value.split("/", 1)[0]

    use_tls = scheme.lower() in {"mqtts", "ssl", "tls"}
    default_port = 8883 if use_tls else 1883
    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port), use_tls
    return value, default_port, use_tls


def build_broker_settings(config: HubConfig) -> BrokerSettings:
    """Build broker connection details from the hub configuration."""
    if not config.mqtt_broker_url:
        raise AirHubConfigError("mqtt_broker_url is not configured")
    try:
        host, port, use_tls = _parse_broker(config.mqtt_broker_url)
    except ValueError as exc:
        raise AirHubConfigError(f"Invalid mqtt_broker_url {config.mqtt_broker_url!r}") from exc
    return BrokerSettings(
        host=host,
        port=port,
        topic=config.mqtt_topic,
        client_id=f"airhub_{secrets.token_hex(6)}",
        use_tls=use_tls,
        username=config.mqtt_username,
        password=config.mqtt_password,
    )


def decode_broker_payload(payload: bytes) -> Any:
    """Decode broker payload bytes into JSON (object or array)."""
    text = payload.decode("utf-8", errors="replace").strip()
    parsed = json.loads(text)
    if not isinstance(parsed, (dict, list)):
        raise AirHubError("Broker payload decoded to a JSON scalar")
    return parsed


class BrokerRuntime:
    """Subscribes to the reading topic on paho's network thread.

    Decoded messages are handed to *on_message* on the owning event loop,
    so the callback never runs on the network thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[BrokerMessage], None],
        keepalive: int = 120,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def start(self, settings: BrokerSettings) -> None:
        """Connect to the broker and subscribe to ``settings.topic``.

        A runtime that is already connected is stopped first.
        """
        self.stop()
        self._logger.info("Connecting to broker %s:%d for %s", settings.host, settings.port, settings.topic)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.use_tls:
            client.tls_set()
        client.on_connect = self._handle_connect
        client.on_message = self._handle_message
        client.on_disconnect = self._handle_disconnect

        self._topic = settings.topic
        client.connect(settings.host, settings.port, keepalive=self._keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        """Disconnect and join the network thread; a no-op when idle."""
        client, self._client = self._client, None
        self._topic = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
        self._logger.info("Broker subscription closed")

    def _handle_connect(self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        if reason_code.value != 0:
            self._logger.warning("Broker refused connection: %s", reason_code)
            return
        # Runs again on every reconnect.
        if self._topic:
            client.subscribe(self._topic, qos=0)
            self._logger.debug("Subscribed to %s", self._topic)

    def _handle_message(self, _client: Any, _userdata: Any, msg: Any) -> None:
        try:
            parsed = decode_broker_payload(msg.payload)
        except (ValueError, AirHubError):
            self._logger.debug("Skipping undecodable message on %s", msg.topic, exc_info=True)
            return
        self._loop.call_soon_threadsafe(self._on_message, BrokerMessage(topic=msg.topic, payload=parsed))

    def _handle_disconnect(
        self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any
    ) -> None:
        if self._client is not None:
            self._logger.debug("Broker connection lost (%s); paho will reconnect", reason_code)
