# core/config_loader.py
import configparser
import logging
import os
import sys
from typing import Any, Type

from core.app_state import AppState
from core.constants import DEFAULT_MQTT_PORT, DEFAULT_MQTT_TOPIC, DEFAULT_POLL_INTERVAL

logger = logging.getLogger(__name__)

TRUE_STRINGS = ('true', '1', 'yes', 'on')


def _read_setting(config: configparser.ConfigParser, section: str, name: str,
                  return_type: Type = str, default: Any = None) -> Any:
    """
    Returns one setting as `return_type`.

    An environment variable named like the setting (upper case) wins over the
    file. Everything after a ';' is a comment. Values that cannot be converted
    are logged and replaced by `default`.
    """
    raw = os.environ.get(name.upper())
    if raw is None:
        raw = config.get(section, name, fallback=None)
    if raw is None:
        return default

    value = raw.split(';')[0].strip().strip("'\"")
    if return_type == bool:
        return value.lower() in TRUE_STRINGS
    try:
        return return_type(value)
    except (ValueError, TypeError):
        logger.warning(f"[{section}] {name} = '{value}' is not a valid {return_type.__name__}, using {default}")
        return default


def load_configuration(config_path: str, app_state: AppState):
    """
    Reads config.ini into `app_state`.

    Only the application sections ([GENERAL], [LOGGING], [MQTT]) are parsed
    here. `[PLUGIN_<instance>]` sections stay raw in `app_state.config`; each
    plugin parses its own section when it is loaded.

    Args:
        config_path (str): Path of the ini file. A missing file is not an error;
                           defaults and environment variables are used instead.
        app_state (AppState): Receives the parsed settings.
    """
    config = configparser.ConfigParser(interpolation=None)
    if config.read(config_path, encoding='utf-8'):
        logger.info(f"Read configuration from {config_path}")
    else:
        logger.warning(f"No configuration file at {config_path}, using defaults and environment variables.")
    app_state.config = config

    app_state.poll_interval = _read_setting(config, 'GENERAL', "POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL)
    instances = _read_setting(config, 'GENERAL', "PLUGIN_INSTANCES", str, "")
    app_state.configured_plugin_instance_names = [name.strip() for name in instances.split(',') if name.strip()]

    app_state.log_level = _read_setting(config, 'LOGGING', "LOG_LEVEL", str, "INFO").upper()
    app_state.log_to_file = _read_setting(config, 'LOGGING', "LOG_TO_FILE", bool, True)

    app_state.enable_mqtt = _read_setting(config, 'MQTT', "ENABLE_MQTT", bool, False)
    if app_state.enable_mqtt:
        app_state.mqtt_host = _read_setting(config, 'MQTT', "MQTT_HOST", str, "localhost")
        app_state.mqtt_port = _read_setting(config, 'MQTT', "MQTT_PORT", int, DEFAULT_MQTT_PORT)
        app_state.mqtt_username = _read_setting(config, 'MQTT', "MQTT_USERNAME") or None
        app_state.mqtt_password = _read_setting(config, 'MQTT', "MQTT_PASSWORD") or None
        app_state.mqtt_client_id = _read_setting(config, 'MQTT', "MQTT_CLIENT_ID") or None
        app_state.mqtt_topic = _read_setting(config, 'MQTT', "MQTT_TOPIC", str, DEFAULT_MQTT_TOPIC).rstrip('/')
        app_state.availability_topic = f"{app_state.mqtt_topic}/bridge/status"

    logger.info(f"Configuration loaded: {len(app_state.configured_plugin_instance_names)} plugin instance(s), "
                f"POLL_INTERVAL={app_state.poll_interval}s, MQTT {'on' if app_state.enable_mqtt else 'off'}.")


def validate_core_config(app_state: AppState):
    """
    Stops the process (exit code 1) when the service cannot run at all.

    Checks that PLUGIN_INSTANCES names at least one instance, that every
    instance section sets `plugin_type` and that POLL_INTERVAL is not
    negative. Problems inside a plugin section are left to the plugin.
    """
    problems = []
    names = app_state.configured_plugin_instance_names
    if not names:
        problems.append("[GENERAL] PLUGIN_INSTANCES is empty (e.g. PLUGIN_INSTANCES = Battery1, Battery2)")
    for name in names:
        if not app_state.config.get(f"PLUGIN_{name}", "plugin_type", fallback=None):
            problems.append(f"[PLUGIN_{name}] has no 'plugin_type'")
    if len(set(names)) != len(names):
        problems.append("PLUGIN_INSTANCES lists an instance more than once")
    if app_state.poll_interval < 0:
        problems.append("POLL_INTERVAL must be >= 0")

    if problems:
        logger.critical("Invalid configuration: " + "; ".join(problems) + ". Exiting.")
        sys.exit(1)

    logger.info("Core configuration is valid.")
