"""
MQTT client wrapper for publishing ViBus telemetry.

Handles MQTT connection, publishing, and disconnection for one-shot CLI use
(sample data for the live service, bridge testing).
"""

import json
from typing import Any, Dict

import paho.mqtt.client as mqtt

from vibus_mqtt.config import BrokerConfig, ClientSettings


class TelemetryPublisher:
    """
    MQTT client for publishing telemetry payloads.

    Publishes JSON payloads to ViBus topics and waits for the broker to
    acknowledge them (QoS 1 by default).
    """

    def __init__(self, config: BrokerConfig, client_id_prefix: str = "vibus_cli"):
        """
        Initialize telemetry publisher.

        Args:
            config: Broker parameters
            client_id_prefix: Prefix of the generated client id
        """
        self.config = config

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=ClientSettings.generate_client_id(client_id_prefix),
        )

        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.use_ssl:
            self.client.tls_set()

    def publish(
        self,
        topic: str,
        payload: Dict[str, Any],
        qos: int = 1,
        retain: bool = False,
        timeout: float = ClientSettings.OPERATION_TIMEOUT_SECONDS
    ) -> None:
        """
        Publish one JSON payload.

        Args:
            topic: MQTT topic (e.g., "vibus/autobus/SVT101/posizione")
            payload: Payload dictionary (will be JSON serialized)
            qos: Quality of Service (default: 1)
            retain: Retain flag
            timeout: Seconds to wait for the broker acknowledgement

        Raises:
            ConnectionError: If unable to connect to MQTT broker
            ValueError: If payload serialization fails
            RuntimeError: If the publish is not acknowledged
        """
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid payload data: {e}") from e

        try:
            self.client.connect(
                self.config.host, self.config.port, keepalive=ClientSettings.KEEP_ALIVE_SECONDS
            )
        except OSError as e:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.config.broker_url}. "
                "Is mosquitto running?"
            ) from e

        self.client.loop_start()
        try:
            info = self.client.publish(topic, body, qos=qos, retain=retain)
            info.wait_for_publish(timeout=timeout)
            if not info.is_published():
                raise RuntimeError(f"Publish to {topic} not acknowledged within {timeout}s")
        finally:
            self.client.disconnect()
            self.client.loop_stop()

        print(f"✅ Published to {topic}")
