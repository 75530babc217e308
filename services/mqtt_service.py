# services/mqtt_service.py
import paho.mqtt.client as mqtt
import logging
import threading
import json
from typing import Any, Dict, Optional, Union

from core.config_loader import GlobalConfig
from core.exceptions import PublishError
from plugins.plugin_interface import TelemetryKeys
from utils.helpers import STATUS_ONLINE, STATUS_OFFLINE, describe_error, utc_timestamp

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, Dict[str, Any]]


class MqttService:
    """
    Publishes inverter telemetry and availability to an MQTT broker.

    The paho client runs its own network thread (`loop_start`) and takes care
    of reconnecting; this service only configures it, announces the bridge's
    availability on every (re)connect and offers thread-safe, fire-and-forget
    publishing to the device poll threads.

    Topics (prefix configurable):
    - `<prefix>/availability`            bridge availability, retained
    - `<prefix>/<device>/availability`   device availability, retained
    - `<prefix>/<device>/state`          telemetry record, not retained
    - `<prefix>/<device>/last_error`     last error record, retained
    """
    def __init__(self, config: GlobalConfig):
        self.config = config
        self.topic_prefix = config.mqtt_topic_prefix
        self.client: Optional[mqtt.Client] = None
        self._is_connected = threading.Event()
        self.last_state: Optional[str] = None

    # --- Topics ---
    @property
    def availability_topic(self) -> str:
        return f"{self.topic_prefix}/availability"

    def device_topic(self, device_name: str, suffix: str) -> str:
        return f"{self.topic_prefix}/{device_name}/{suffix}"

    @property
    def is_connected(self) -> bool:
        return self._is_connected.is_set()

    # --- Lifecycle ---
    def start(self):
        """
        Configures the client and starts connecting in the background.

        Connection failures are retried by paho at the configured reconnect
        period; an unreachable broker never blocks the caller.
        """
        self._setup_client()
        logger.info(f"MQTT Service: Connecting to broker at {self.config.mqtt_host}:{self.config.mqtt_port}...")
        self.client.connect_async(self.config.mqtt_host, self.config.mqtt_port, keepalive=self.config.mqtt_keepalive_s)
        self.client.loop_start()

    def stop(self):
        """
        Publishes the bridge 'offline' status, disconnects and stops the network thread.
        """
        if not self.client:
            return
        logger.info(f"MQTT Service: Stopping (state: {self.last_state})...")
        if self._is_connected.is_set():
            try:
                info = self.client.publish(self.availability_topic, STATUS_OFFLINE, qos=0, retain=True)
                info.wait_for_publish(timeout=1.0)
            except (ValueError, RuntimeError) as e:
                logger.error(f"MQTT Service: Error publishing offline status during stop: {e}")
        self.client.disconnect()
        self.client.loop_stop()
        self._is_connected.clear()
        logger.info("MQTT Service: Stopped.")

    def _setup_client(self):
        """
        Creates and configures the Paho MQTT client object.

        Sets the client ID, credentials, reconnect delay and a Last Will so that
        the broker marks the bridge 'offline' if the connection drops without a
        clean disconnect.
        """
        # Use MQTTv311 for broader compatibility, especially with older brokers.
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.mqtt_client_id,
            protocol=mqtt.MQTTv311,
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_connect_fail = self._on_connect_fail

        if self.config.mqtt_username:
            self.client.username_pw_set(self.config.mqtt_username, self.config.mqtt_password or "")

        period = self.config.mqtt_reconnect_period_s
        self.client.reconnect_delay_set(min_delay=max(1, int(period)), max_delay=max(1, int(period)))
        self.client.will_set(self.availability_topic, STATUS_OFFLINE, qos=0, retain=True)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """
        Callback executed when the broker answers the connection request.

        Publishes the retained bridge 'online' status on every successful
        (re)connection.
        """
        if reason_code.is_failure:
            self.last_state = f"Failed ({reason_code})"
            self._is_connected.clear()
            logger.error(f"MQTT Service: Failed to connect: {reason_code}")
            return
        self.last_state = "connected"
        self._is_connected.set()
        logger.info("MQTT Service: Successfully connected to broker.")
        client.publish(self.availability_topic, STATUS_ONLINE, qos=0, retain=True)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Callback executed when the client disconnects from the broker."""
        self.last_state = "Disconnected"
        self._is_connected.clear()
        if reason_code.is_failure:
            logger.warning(f"MQTT Service: Unexpectedly disconnected from broker ({reason_code}). Reconnection will be attempted.")

    def _on_connect_fail(self, client, userdata):
        """Callback executed when a (re)connection attempt fails at the socket level."""
        self.last_state = "Connection Error"
        logger.error(f"MQTT Service: Could not reach broker at {self.config.mqtt_host}:{self.config.mqtt_port}. Retrying...")

    # --- Publishing ---
    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0):
        """
        Publishes a message without waiting for delivery.

        Dict payloads are JSON-encoded. While the broker is unreachable the
        message is dropped and logged at debug level; that is not an error.

        Raises:
            PublishError: If the client was never started or paho rejects the call.
        """
        if self.client is None:
            raise PublishError("MQTT client has not been started.")
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        try:
            info = self.client.publish(topic, payload, qos=qos, retain=retain)
        except (ValueError, TypeError, OSError) as e:
            raise PublishError(f"Publish to '{topic}' failed: {e}") from e

        if info.rc == mqtt.MQTT_ERR_NO_CONN:
            logger.debug(f"MQTT Service: Not connected, dropped message for '{topic}'.")
        elif info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"MQTT Service: Publish to '{topic}' returned {mqtt.error_string(info.rc)}.")
        return info

    def publish_device_availability(self, device_name: str, online: bool):
        status = STATUS_ONLINE if online else STATUS_OFFLINE
        self.publish(self.device_topic(device_name, "availability"), status, retain=True)

    def publish_state(self, device_name: str, record: Dict[str, Any]):
        self.publish(self.device_topic(device_name, "state"), record, retain=False)

    def publish_last_error(self, device_name: str, error: BaseException, timestamp: Optional[str] = None):
        self.publish(
            self.device_topic(device_name, "last_error"),
            {TelemetryKeys.ERROR: describe_error(error), TelemetryKeys.TIMESTAMP: timestamp or utc_timestamp()},
            retain=True,
        )
