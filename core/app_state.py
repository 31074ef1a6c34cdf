# core/app_state.py
import threading
import queue
from typing import Dict, Any, Optional, List, TYPE_CHECKING

from core.constants import DEFAULT_MQTT_PORT, DEFAULT_MQTT_TOPIC, DEFAULT_POLL_INTERVAL

if TYPE_CHECKING:
    from plugins.plugin_interface import DevicePlugin

class AppState:
    """
    Centralized application state management class.

    This class serves as the single source of truth for all shared application state,
    including configuration, plugin instances, threading primitives, and runtime data.

    Key responsibilities:
    - Configuration storage and access
    - Plugin instance management
    - Thread synchronization primitives (stop and manual poll events)
    - The latest committed readings per device
    """
    def __init__(self, version: str):
        # Version and Lifecycle
        self.version = version
        self.running = True
        self.main_threads_stop_event = threading.Event()
        self.plugin_stop_events: Dict[str, threading.Event] = {}
        self.manual_poll_events: Dict[str, threading.Event] = {}

        # Configuration (will be populated by config_loader)
        self.config = None
        self.poll_interval: float = DEFAULT_POLL_INTERVAL
        self.configured_plugin_instance_names: List[str] = []

        # Logging
        self.log_level = "INFO"
        self.log_to_file = True

        # MQTT State
        self.enable_mqtt = False
        self.mqtt_host = "localhost"
        self.mqtt_port = DEFAULT_MQTT_PORT
        self.mqtt_username: Optional[str] = None
        self.mqtt_password: Optional[str] = None
        self.mqtt_client_id: Optional[str] = None
        self.mqtt_topic = DEFAULT_MQTT_TOPIC
        self.availability_topic = f"{self.mqtt_topic}/bridge/status"

        # Plugin & Polling State
        self.active_plugin_instances: Dict[str, 'DevicePlugin'] = {}
        self.plugin_polling_threads: Dict[str, threading.Thread] = {}
        self.plugin_data_queue = queue.Queue(maxsize=100) # Committed ReadingSets from plugins to processor
        self.processed_data_dispatch_queue = queue.Queue(maxsize=20) # Per-device snapshots to consumers (MQTT)
        self.per_plugin_data_cache: Dict[str, Dict[str, Any]] = {}
        self.last_cycle_timestamp_per_plugin: Dict[str, float] = {}

        # Locks
        self.data_lock = threading.RLock()
        self.plugin_state_lock = threading.RLock()
