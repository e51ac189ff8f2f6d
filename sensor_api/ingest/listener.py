from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import paho.mqtt.client as mqtt

from sensor_api.core.config import Settings
from sensor_api.ingest.decoder import PayloadError, decode_value, resolve_kind
from sensor_api.ingest.writer import IngestClock, ReadingWriter
from sensor_api.models.reading import Reading, SensorKind

logger = logging.getLogger(__name__)


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttReadingListener:
    """Long-lived MQTT subscription feeding the reading writer.

    paho's network thread owns the connection: it retries the first connect
    and reconnects after every drop with exponential backoff, and
    ``on_connect`` re-subscribes each time. Nothing is buffered while the
    link is down, so delivery is at-most-once.
    """

    def __init__(
        self,
        *,
        writer: ReadingWriter,
        channels: Mapping[str, SensorKind],
        host: str,
        port: int = 1883,
        client_id: str = "sensor-api",
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        qos: int = 0,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 120,
        clock: IngestClock | None = None,
        client_factory: Callable[[str], Any] = _default_client_factory,
    ) -> None:
        self._writer = writer
        self._channels = dict(channels)
        self._host = host
        self._port = port
        self._client_id = client_id
        self._username = username
        self._password = password
        self._keepalive = keepalive
        self._qos = qos
        self._reconnect_min_delay = reconnect_min_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._clock = clock or IngestClock()
        self._client_factory = client_factory

        self._client: Any = None
        self._connected = threading.Event()
        self._pending_subscriptions: dict[int, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings, *, writer: ReadingWriter) -> "MqttReadingListener":
        return cls(
            writer=writer,
            channels=settings.channel_kinds,
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            client_id=settings.mqtt_client_id,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            keepalive=settings.mqtt_keepalive,
            qos=settings.mqtt_qos,
            reconnect_min_delay=settings.mqtt_reconnect_min_delay,
            reconnect_max_delay=settings.mqtt_reconnect_max_delay,
        )

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def topics(self) -> list[str]:
        return sorted(self._channels)

    def start(self) -> None:
        client = self._client_factory(self._client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        if self._username:
            client.username_pw_set(self._username, self._password)
        client.reconnect_delay_set(
            min_delay=self._reconnect_min_delay, max_delay=self._reconnect_max_delay
        )

        logger.info("Connecting to MQTT broker %s:%d", self._host, self._port)
        # connect_async + loop_start: the first connect is retried by the loop
        # thread too, so an unreachable broker never blocks startup.
        client.connect_async(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.disconnect()
        client.loop_stop()
        self._connected.clear()
        logger.info("MQTT listener stopped")

    def status(self) -> dict[str, Any]:
        return {
            "enabled": True,
            "connected": self.connected,
            "broker": f"{self._host}:{self._port}",
            "topics": self.topics,
            "queue_depth": self._writer.queue_depth,
            **self._writer.stats.snapshot(),
        }

    def handle_message(self, topic: str, payload: bytes) -> Reading | None:
        """Decode one message and queue it for storage.

        Returns the queued reading, or ``None`` when the message was dropped.
        """
        stats = self._writer.stats
        stats.incr("received")
        try:
            value = decode_value(payload)
        except PayloadError as e:
            stats.incr("dropped_unparsable")
            logger.warning("Dropping message", extra={"topic": topic, "reason": str(e)})
            return None

        kind = resolve_kind(topic, self._channels)
        if kind is None:
            stats.incr("dropped_unmapped")
            logger.warning(
                "Dropping message", extra={"topic": topic, "reason": "unmapped channel"}
            )
            return None

        reading = Reading(
            sensor_kind=kind,
            value=value,
            timestamp=self._clock.now(),
            source_channel=topic,
        )
        if not self._writer.submit(reading):
            return None
        return reading

    def subscribe_all(self, client: Any) -> list[str]:
        subscribed: list[str] = []
        for topic in self.topics:
            try:
                result, mid = client.subscribe(topic, qos=self._qos)
            except (ValueError, OSError) as e:
                logger.error("Subscribe failed: %s", e, extra={"topic": topic})
                continue
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.error(
                    "Subscribe failed: %s", mqtt.error_string(result), extra={"topic": topic}
                )
                continue
            if mid is not None:
                self._pending_subscriptions[mid] = topic
            subscribed.append(topic)
        return subscribed

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._connected.clear()
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self._connected.set()
        logger.info("Connected to MQTT broker")
        subscribed = self.subscribe_all(client)
        logger.info("Subscribing to %d/%d channels", len(subscribed), len(self._channels))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected.clear()
        # SUBACKs for these will never arrive; on_connect subscribes afresh.
        self._pending_subscriptions.clear()
        if self._client is None:
            return
        logger.warning("Disconnected from MQTT broker (%s), reconnecting", reason_code)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        topic = self._pending_subscriptions.pop(mid, "?")
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error("Broker rejected subscription: %s", reason_code, extra={"topic": topic})
            else:
                logger.info("Subscribed", extra={"topic": topic})

    def _on_message(self, client, userdata, message) -> None:
        self.handle_message(message.topic, message.payload)
