# services/mqtt_service.py
import paho.mqtt.client as mqtt
import logging
import threading
import json
import queue
import os
from typing import Dict, Any, Optional

from core.app_state import AppState
from core.config_loader import TRUE_STRINGS
from core.constants import DEFAULT_MQTT_RECONNECT_BACKOFF_MAX, DEFAULT_QUEUE_GET_TIMEOUT, MQTT_THREAD_NAME
from core.plugin_manager import request_manual_poll, set_plugin_disabled
from utils.helpers import STATUS_CONNECTED, STATUS_ONLINE, STATUS_OFFLINE

logger = logging.getLogger(__name__)

# <topic>/<instance>/<command>/set
COMMAND_DISABLE = "disable"
COMMAND_POLL = "poll"

class MqttService:
    """
    Publishes committed readings of every device to an MQTT broker.

    This service runs in a dedicated thread and is responsible for:
    - Establishing and maintaining a connection to the MQTT broker.
    - Handling automatic reconnection with exponential backoff.
    - Publishing each device snapshot as JSON to `<topic>/<instance>/state`.
    - Publishing device availability to `<topic>/<instance>/status` and the
      bridge availability (with a Last Will) to `<topic>/bridge/status`.
    - Applying the per-device `disable` and `poll` commands it receives.
    """
    def __init__(self, app_state: AppState, client_factory=None):
        self.app_state = app_state
        self.client: Optional[mqtt.Client] = None
        self._thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()
        self._is_connected = threading.Event()
        self._reconnect_delay = 1
        self._client_factory = client_factory or mqtt.Client
        self.last_state: Optional[str] = None

    def start(self):
        """
        Starts the MQTT service thread.

        If MQTT is disabled in the configuration, this method returns immediately.
        """
        if not self.app_state.enable_mqtt:
            logger.warning("MQTT Service: Disabled by configuration. No data will be published.")
            return
        self._thread = threading.Thread(target=self._run, name=MQTT_THREAD_NAME, daemon=True)
        self._thread.start()

    def stop(self):
        """
        Gracefully stops the MQTT service.

        Publishes 'offline' for the bridge and every device, disconnects the
        client and waits for the service thread to terminate.
        """
        if not self._thread or not self._thread.is_alive():
            return
        logger.info("MQTT Service: Stopping...")
        self.stop_event.set()
        if self.client and self._is_connected.is_set():
            try:
                infos = [self.client.publish(self.app_state.availability_topic, STATUS_OFFLINE, qos=1, retain=True)]
                for instance_id in self.app_state.configured_plugin_instance_names:
                    infos.append(self.client.publish(self._instance_topic(instance_id, "status"), STATUS_OFFLINE, qos=1, retain=True))
                for info in infos:
                    info.wait_for_publish(timeout=1.0)
            except (ValueError, RuntimeError, OSError) as e:
                logger.error(f"MQTT Service: Error publishing offline status during stop: {e}")

        if self.client:
            self.client.disconnect()
            self.client.loop_stop()
        self._thread.join(timeout=5)
        logger.info("MQTT Service: Stopped.")

    def _instance_topic(self, instance_id: str, leaf: str) -> str:
        return f"{self.app_state.mqtt_topic}/{instance_id}/{leaf}"

    def _setup_client(self):
        """
        Creates and configures the Paho MQTT client object.

        Sets the client ID, credentials and a Last Will so that the broker
        marks the bridge 'offline' if the process dies without a clean stop.
        """
        client_id = self.app_state.mqtt_client_id or f"pylontech_monitor_{os.getpid()}"

        # Use MQTTv311 for broader compatibility, especially with older brokers.
        self.client = self._client_factory(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, protocol=mqtt.MQTTv311)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        if self.app_state.mqtt_username:
            self.client.username_pw_set(self.app_state.mqtt_username, self.app_state.mqtt_password)

        self.client.will_set(self.app_state.availability_topic, STATUS_OFFLINE, qos=1, retain=True)

    def _run(self):
        """Main run loop for the MQTT service thread.

        Connects to the broker and, while connected, publishes packages from
        the dispatch queue. A failed or lost connection is retried with an
        exponential backoff capped at one minute.
        """
        self._setup_client()
        broker_host = self.app_state.mqtt_host
        port = self.app_state.mqtt_port

        while not self.stop_event.is_set():
            try:
                if not self._is_connected.is_set():
                    logger.info(f"MQTT Service: Attempting to connect to broker at {broker_host}:{port}...")
                    self.client.connect(broker_host, port, 60)
                    self.client.loop_start() # Start a background thread for network traffic
                    self._is_connected.wait(timeout=10) # Wait for on_connect callback

                if self._is_connected.is_set():
                    try:
                        dispatch_package = self.app_state.processed_data_dispatch_queue.get(timeout=DEFAULT_QUEUE_GET_TIMEOUT)
                    except queue.Empty:
                        continue
                    self._publish_data_packet(dispatch_package)
                else:
                    self.client.loop_stop()
                    logger.warning(f"MQTT connection failed or was lost after waiting. Retrying in {self._reconnect_delay}s...")
                    self._backoff()

            except (ConnectionRefusedError, OSError, TimeoutError) as e:
                logger.error(f"MQTT connection error: {e}. Retrying in {self._reconnect_delay}s...")
                self._is_connected.clear()
                self.client.loop_stop()
                self.last_state = "Connection Error"
                self._backoff()
            except Exception as e:
                logger.error(f"MQTT Service: Unhandled exception in run loop: {e}", exc_info=True)
                self._is_connected.clear()
                self.client.loop_stop()
                self.stop_event.wait(5)

        self.client.loop_stop()

    def _backoff(self):
        self.stop_event.wait(self._reconnect_delay)
        self._reconnect_delay = min(self._reconnect_delay * 2, DEFAULT_MQTT_RECONNECT_BACKOFF_MAX)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback executed when the client connects to the MQTT broker."""
        if not reason_code.is_failure:
            self.last_state = "connected"
            self._is_connected.set()
            self._reconnect_delay = 1
            logger.info("MQTT Service: Successfully connected to broker.")
            client.publish(self.app_state.availability_topic, STATUS_ONLINE, qos=1, retain=True)
            # subscriptions do not survive a reconnect with a clean session
            for command in (COMMAND_DISABLE, COMMAND_POLL):
                client.subscribe(self._instance_topic("+", f"{command}/set"), qos=1)
            self._republish_cached_states()
        else:
            self.last_state = f"Failed ({reason_code})"
            self._is_connected.clear()
            logger.error(f"MQTT Service: Failed to connect. Reason: {reason_code}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback executed when the client disconnects from the MQTT broker."""
        self.last_state = "Disconnected"
        self._is_connected.clear()
        if reason_code.is_failure:
            logger.warning(f"MQTT Service: Unexpectedly disconnected from broker. Reason: {reason_code}. Reconnection will be attempted.")

    def _on_message(self, client, userdata, message):
        """
        Handles the per-device command topics.

        - `<topic>/<instance>/disable/set` with true/1/yes/on disables the
          device, any other payload enables it again.
        - `<topic>/<instance>/poll/set` requests one cycle right away.
        """
        prefix = f"{self.app_state.mqtt_topic}/"
        parts = message.topic[len(prefix):].split('/') if message.topic.startswith(prefix) else []
        if len(parts) != 3 or parts[2] != "set":
            logger.warning(f"MQTT Service: Ignoring message on unexpected topic '{message.topic}'.")
            return
        instance_id, command = parts[0], parts[1]
        payload = message.payload.decode('utf-8', errors='replace').strip()

        if command == COMMAND_DISABLE:
            disabled = payload.lower() in TRUE_STRINGS
            logger.info(f"MQTT Service: {'Disabling' if disabled else 'Enabling'} '{instance_id}' on request.")
            set_plugin_disabled(instance_id, disabled, self.app_state)
        elif command == COMMAND_POLL:
            request_manual_poll(instance_id, self.app_state)
        else:
            logger.warning(f"MQTT Service: Unknown command '{command}' for '{instance_id}'.")

    def _republish_cached_states(self):
        """Publishes the latest snapshot of every device, e.g. after a reconnect."""
        with self.app_state.data_lock:
            cached = {instance_id: dict(data) for instance_id, data in self.app_state.per_plugin_data_cache.items()}
        for instance_id, data in cached.items():
            self._publish_instance(instance_id, data)

    def _publish_data_packet(self, dispatch_package: Dict[str, Any]):
        """
        Publishes one device package from the dispatch queue.

        Args:
            dispatch_package (dict): `{'instance_id': ..., 'data': {...}}` as
                                     produced by the data processor.
        """
        if not self.client or not self._is_connected.is_set():
            return
        instance_id = dispatch_package.get('instance_id')
        data = dispatch_package.get('data')
        if not instance_id or data is None:
            return
        self._publish_instance(instance_id, data)

    def _publish_instance(self, instance_id: str, data: Dict[str, Any]):
        status = STATUS_ONLINE if data.get("state") == STATUS_CONNECTED else STATUS_OFFLINE
        self.client.publish(self._instance_topic(instance_id, "status"), status, qos=1, retain=True)
        self.client.publish(self._instance_topic(instance_id, "state"), json.dumps(data, sort_keys=True), qos=0, retain=True)
        logger.debug(f"MQTT Service: Published {len(data)} readings for '{instance_id}' ({status}).")
