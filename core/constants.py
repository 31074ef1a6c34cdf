"""
Centralized constants for the Pylontech Monitoring application.

This module defines constants used throughout the application to avoid magic
strings and provide a single source of truth for configuration values.
"""

# Application Details
APP_NAME = "Pylontech Monitoring"
LOG_FILE_NAME = "pylontech_monitoring.log"
CONFIG_FILE_NAME = "config.ini"

# Logger Names
CORE_LOGGER_NAME = "PylontechMonitorCore"

# Thread Names
DATA_PROCESSOR_THREAD_NAME = "DataProcessor"
PLUGIN_POLL_THREAD_NAME_PREFIX = "PluginPoll"
MQTT_THREAD_NAME = "MqttPublisher"

# Default Timeouts and Intervals (seconds)
DEFAULT_POLL_INTERVAL = 30
DEFAULT_THREAD_JOIN_TIMEOUT = 5.0
DEFAULT_QUEUE_GET_TIMEOUT = 1.0

# Log file rotation
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

# MQTT
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TOPIC = "pylontech"
DEFAULT_MQTT_RECONNECT_BACKOFF_MAX = 60  # seconds
