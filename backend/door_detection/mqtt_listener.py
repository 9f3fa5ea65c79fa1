"""
mqtt_listener.py — MQTT Telemetry Listener
===========================================

Subscribes to the gateway telemetry topics, feeds every message into the
detection pipeline and publishes door state change notifications back to
the broker for the real-time broadcast layer.

Run:
    python -m backend.door_detection.mqtt_listener
    # Broker host/port from MQTT_BROKER_HOST / MQTT_BROKER_PORT
"""

import json
import logging

import paho.mqtt.client as mqtt

from . import config
from .door_state import StateChangeNotification
from .pipeline import DetectionPipeline, get_pipeline
from .utils import setup_logging

logger = logging.getLogger("door_detection.mqtt")


def create_client(client_id: str = None) -> mqtt.Client:
    """Build a paho client using the v2 callback API."""
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id or config.MQTT_CLIENT_ID,
    )


class MqttTelemetryListener:
    """
    Bridges an MQTT broker and a DetectionPipeline.

    Attributes:
        pipeline (DetectionPipeline): Pipeline receiving telemetry.
        client (mqtt.Client): paho client (injectable for tests).
    """

    def __init__(self, pipeline: DetectionPipeline = None, client=None,
                 topics: list = None, notification_topic: str = None):
        self.pipeline = pipeline or get_pipeline()
        self.client = client or create_client()
        self.topics = topics or config.MQTT_SUBSCRIBE_TOPICS
        self.notification_topic = notification_topic or config.MQTT_NOTIFICATION_TOPIC

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.pipeline.add_listener(self.publish_notification)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if getattr(reason_code, "is_failure", False):
            logger.error(f"MQTT connection refused: {reason_code}")
            return
        for topic in self.topics:
            client.subscribe(topic, qos=config.MQTT_QOS)
        logger.info(f"MQTT connected, subscribed to {self.topics}")

    def _on_message(self, client, userdata, message):
        outcome = self.pipeline.process(message.topic, message.payload)
        if not outcome.ok:
            logger.debug(
                f"Message on {message.topic} not processed: "
                f"{outcome.status} ({outcome.error_kind})"
            )

    def publish_notification(self, notification: StateChangeNotification) -> None:
        """Publish a state change notification as JSON."""
        payload = json.dumps(notification.to_dict())
        try:
            self.client.publish(self.notification_topic, payload, qos=config.MQTT_QOS)
            logger.info(f"State change published: topic={self.notification_topic} "
                        f"payload={payload}")
        except Exception as e:
            logger.error(f"Failed to publish state change: {e}")

    def start(self, host: str = None, port: int = None, blocking: bool = True) -> None:
        """Connect to the broker and start the network loop."""
        host = host or config.MQTT_BROKER_HOST
        port = port or config.MQTT_BROKER_PORT
        self.client.connect(host, port, 60)
        logger.info(f"MQTT listener connecting to {host}:{port}")
        if blocking:
            self.client.loop_forever()
        else:
            self.client.loop_start()

    def stop(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        logger.info("MQTT listener stopped")


if __name__ == "__main__":
    setup_logging()
    MqttTelemetryListener().start()
