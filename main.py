"""
Entry point of the Pylontech Monitoring service.

Startup order: config.ini (plus environment overrides), logging, core
configuration checks, one plugin instance per `[PLUGIN_<name>]` section, then
the data processor, the MQTT publisher and one poll thread per battery.

Signals:
- SIGINT/SIGTERM stop every thread and close all battery connections.
- SIGUSR1 (where available) runs one cycle on every manual-mode battery.
"""

import logging
from logging.handlers import RotatingFileHandler
import pathlib
import sys
import threading
import signal
from typing import Callable, Dict

from core.app_state import AppState
from core.config_loader import load_configuration, validate_core_config
from core.plugin_manager import (
    load_plugin_instance,
    request_manual_polls,
    start_plugin_polling_threads,
    stop_plugin_polling_threads,
)
from core.data_processor import process_committed_readings
from core.constants import (
    APP_NAME, CONFIG_FILE_NAME, CORE_LOGGER_NAME, DATA_PROCESSOR_THREAD_NAME,
    DEFAULT_THREAD_JOIN_TIMEOUT, LOG_FILE_BACKUP_COUNT, LOG_FILE_MAX_BYTES, LOG_FILE_NAME,
)
from plugins.plugin_interface import DevicePlugin
from services.mqtt_service import MqttService

__version__ = "1.0.0"

LOG_FORMAT = '%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s'


def setup_logging(app_state: AppState):
    """
    Replaces any root handlers with a console handler and, if LOG_TO_FILE is
    set, a size-rotated log file next to this script.

    Unknown LOG_LEVEL names fall back to INFO.
    """
    level = logging.getLevelName(app_state.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file_path = None
    if app_state.log_to_file:
        log_file_path = pathlib.Path(__file__).parent / LOG_FILE_NAME
        handlers.append(RotatingFileHandler(
            log_file_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT, encoding='utf-8'
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if log_file_path:
        logging.info(f"Writing log file {log_file_path}")
    logging.info(f"Log level: {logging.getLevelName(level)}")


def load_plugins(app_state: AppState, logger: logging.Logger) -> Dict[str, DevicePlugin]:
    """Instantiates every configured plugin; instances that fail to load are skipped."""
    for name in app_state.configured_plugin_instance_names:
        plugin_type = app_state.config.get(f"PLUGIN_{name}", "plugin_type")
        instance = load_plugin_instance(plugin_type, name, app_state)
        if instance is None:
            logger.error(f"Instance '{name}' ({plugin_type}) could not be loaded and will not be polled.")
            continue
        app_state.active_plugin_instances[name] = instance
        mode = "disabled" if instance.is_disabled else (f"every {instance.poll_interval}s" if instance.poll_interval > 0 else "manual")
        logger.info(f"Instance '{name}': {instance.pretty_name}, polling {mode}.")
    return app_state.active_plugin_instances


def graceful_exit(app_state: AppState) -> Callable[[int, object], None]:
    """Returns a signal handler that starts the shutdown sequence once."""
    def handler(signum, frame):
        if not app_state.running:
            return
        logging.getLogger(CORE_LOGGER_NAME).warning(f"{signal.Signals(signum).name} received, shutting down...")
        app_state.running = False
        app_state.main_threads_stop_event.set()
    return handler


def manual_poll_trigger(app_state: AppState) -> Callable[[int, object], None]:
    """Returns a signal handler that requests one cycle from every manual-mode device."""
    def handler(signum, frame):
        requested = request_manual_polls(app_state)
        logging.getLogger(CORE_LOGGER_NAME).info(
            f"{signal.Signals(signum).name}: manual poll requested for {requested or 'no devices'}.")
    return handler


def main() -> int:
    app_state = AppState(version=__version__)
    load_configuration(str(pathlib.Path(__file__).parent.resolve() / CONFIG_FILE_NAME), app_state)

    setup_logging(app_state)
    logger = logging.getLogger(CORE_LOGGER_NAME)
    logger.info(f"{APP_NAME} v{__version__} starting")

    # exits the process on fatal configuration errors
    validate_core_config(app_state)

    if not load_plugins(app_state, logger):
        logger.critical("None of the configured plugin instances could be loaded. Exiting.")
        return 1

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, graceful_exit(app_state))
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, manual_poll_trigger(app_state))

    mqtt_service = MqttService(app_state)
    processor = threading.Thread(
        target=process_committed_readings,
        args=(app_state, app_state.plugin_data_queue),
        name=DATA_PROCESSOR_THREAD_NAME, daemon=True
    )
    processor.start()
    mqtt_service.start()
    start_plugin_polling_threads(app_state)
    logger.info(f"Polling {len(app_state.active_plugin_instances)} device(s). Press Ctrl+C to stop.")

    try:
        app_state.main_threads_stop_event.wait()
    except KeyboardInterrupt:
        logger.warning("Interrupted, shutting down...")
    finally:
        app_state.running = False
        app_state.main_threads_stop_event.set()

        stop_plugin_polling_threads(app_state)
        mqtt_service.stop()
        processor.join(timeout=DEFAULT_THREAD_JOIN_TIMEOUT)
        if processor.is_alive():
            logger.warning(f"Thread {processor.name} did not stop in time")
        logger.info(f"{APP_NAME} v{__version__} stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
