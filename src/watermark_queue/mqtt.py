"""MQTT broadcaster for queue events."""

import json
import logging
import time
from typing import Any

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTBroadcaster:
    """MQTT event broadcaster for queue admissions, releases and sweeps.

    Clients that prefer push over polling subscribe to ``topic`` for events,
    or to ``{topic}/status`` for the retained latest queue snapshot.
    """

    def __init__(self, broker: str, port: int, topic: str):
        self.broker: str = broker
        self.port: int = port
        self.topic: str = topic
        self.client: mqtt.Client | None = None
        self.connected: bool = False

    @property
    def status_topic(self) -> str:
        return f"{self.topic}/status"

    def connect(self) -> bool:
        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            self.client.on_connect = self._on_connect
            _ = self.client.connect(self.broker, self.port, keepalive=60)
            _ = self.client.loop_start()
            self.connected = True
            return True
        except Exception as e:
            logger.warning(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> None:
        if self.client:
            _ = self.client.loop_stop()
            _ = self.client.disconnect()
            self.connected = False

    def publish_event(self, event_type: str, data: dict[str, Any]) -> bool:
        if not self.connected or not self.client:
            return False
        try:
            payload = {
                "event_type": event_type,
                "timestamp": int(time.time() * 1000),
                **data,
            }
            result = self.client.publish(self.topic, json.dumps(payload), qos=1)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing event: {e}")
            return False

    def publish_retained(self, topic: str, payload: str, qos: int = 1) -> bool:
        """Publish a retained MQTT message."""
        if not self.connected or not self.client:
            return False
        try:
            result = self.client.publish(topic, payload, qos=qos, retain=True)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing retained message: {e}")
            return False

    def _on_connect(self, client, userdata, flags, reason_code, properties):  # pyright: ignore[reportMissingParameterType, reportUnknownParameterType]
        self.connected = not reason_code.is_failure


class NoOpBroadcaster:
    """No-operation broadcaster for testing or when MQTT disabled."""

    topic: str = ""
    status_topic: str = ""

    def connect(self) -> bool:
        return True

    def disconnect(self) -> None:
        pass

    def publish_event(self, event_type: str, data: dict[str, Any]) -> bool:
        return True

    def publish_retained(self, topic: str, payload: str, qos: int = 1) -> bool:
        return True


_broadcaster: MQTTBroadcaster | NoOpBroadcaster | None = None
_broadcaster_config: dict[str, Any] | None = None


def get_broadcaster(
    broadcast_type: str, broker: str, port: int, topic: str
) -> MQTTBroadcaster | NoOpBroadcaster:
    """Get or create global broadcaster instance based on config."""
    global _broadcaster, _broadcaster_config

    desired_config = {
        "broadcast_type": broadcast_type,
        "broker": broker,
        "port": port,
        "topic": topic,
    }

    if _broadcaster is not None and _broadcaster_config == desired_config:
        return _broadcaster

    # Config changed, drop the old connection
    shutdown_broadcaster()

    broadcaster: MQTTBroadcaster | NoOpBroadcaster
    if broadcast_type == "mqtt":
        broadcaster = MQTTBroadcaster(broker, port, topic)
    else:
        broadcaster = NoOpBroadcaster()
    _ = broadcaster.connect()

    _broadcaster = broadcaster
    _broadcaster_config = desired_config
    return broadcaster


def shutdown_broadcaster() -> None:
    """Shutdown global broadcaster."""
    global _broadcaster, _broadcaster_config
    if _broadcaster:
        _broadcaster.disconnect()
    _broadcaster = None
    _broadcaster_config = None
