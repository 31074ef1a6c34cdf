# core/plugin_manager.py
import logging
import threading
import time
import inspect
import queue
from typing import Dict, Any, Optional, List

from plugins.plugin_interface import DevicePlugin
from core.app_state import AppState
from core.constants import DEFAULT_THREAD_JOIN_TIMEOUT, PLUGIN_POLL_THREAD_NAME_PREFIX

logger = logging.getLogger(__name__)

def load_plugin_instance(plugin_type_full: str, instance_name: str, app_state: AppState) -> Optional[DevicePlugin]:
    """
    Loads a single plugin instance based on its type string and config.

    This function dynamically imports and instantiates a plugin class based on the
    provided plugin type string. It expects the type string to follow a
    'category.module_name' format. The function then imports the specified module,
    searches for a concrete subclass of `DevicePlugin`, and instantiates it using
    plugin-specific configurations retrieved from the application's configuration.

    Parameters:
        plugin_type_full (str): A string identifying the plugin's category and module,
                               e.g., "battery.pylontech_lv_plugin".
        instance_name (str): A unique name for this specific instance of the plugin.
        app_state (AppState): The application state object providing access to the
                              application's configuration and other global data.

    Returns:
        Optional[DevicePlugin]: An instance of the loaded plugin if successful,
                               otherwise None.
    """
    try:
        if '.' not in plugin_type_full:
            logger.error(f"Invalid plugin_type format '{plugin_type_full}' for instance '{instance_name}'. Expected 'category.module_name'.")
            return None

        category, module_name = plugin_type_full.split('.', 1)
        mod_path = f"plugins.{category}.{module_name}"

        plug_mod = __import__(mod_path, fromlist=[module_name])

        found_class = None
        for item_name in dir(plug_mod):
            item_obj = getattr(plug_mod, item_name)
            if (isinstance(item_obj, type) and
                    issubclass(item_obj, DevicePlugin) and
                    item_obj.__module__ == plug_mod.__name__ and
                    not inspect.isabstract(item_obj)):
                found_class = item_obj
                logger.debug(f"Found concrete plugin class '{found_class.__name__}' in module {mod_path}.")
                break

        if not found_class:
            logger.error(f"No valid, non-abstract DevicePlugin subclass found in module {mod_path}.")
            return None

        config_section = f"PLUGIN_{instance_name}"
        plugin_config = dict(app_state.config.items(config_section)) if app_state.config and app_state.config.has_section(config_section) else {}

        logger.info(f"Instantiating plugin '{instance_name}' (Class: {found_class.__name__})")
        return found_class(instance_name=instance_name, plugin_specific_config=plugin_config, main_logger=logger, app_state=app_state)

    except ImportError as e:
        logger.error(f"Cannot import plugin module for type '{plugin_type_full}': {e}", exc_info=True)
    except Exception as e:
        logger.error(f"Unexpected error loading plugin instance '{instance_name}': {e}", exc_info=True)
    return None

def _publish_snapshot(instance_id: str, snapshot: Dict[str, Any], app_state: AppState, data_queue: queue.Queue):
    with app_state.plugin_state_lock:
        app_state.last_cycle_timestamp_per_plugin[instance_id] = time.monotonic()
    data_queue.put({'instance_id': instance_id, 'data': snapshot})

def poll_single_plugin_instance_thread(instance_id: str, app_state: AppState, data_queue: queue.Queue):
    """
    Dedicated polling thread for one plugin instance.

    Runs `run_cycle` on the plugin's own schedule and puts every committed
    snapshot on the data queue for the data processor. Cycles of one instance
    never overlap because only this thread calls `run_cycle`.

    Scheduling:
    - **Interval > 0:** a cycle runs right away and then every `poll_interval`
      seconds, measured from the start of the previous cycle.
    - **Interval == 0 (manual):** the thread sleeps until `request_manual_poll`
      sets the instance's manual poll event.
    - **Disabled:** no cycles run; the thread sleeps until it is woken up by
      re-enabling, a manual request or the stop event.

    Anything escaping the plugin is logged here so that one device cannot
    take the thread down.
    """
    thread_logger = logging.getLogger(f"{PLUGIN_POLL_THREAD_NAME_PREFIX}_{instance_id}")
    thread_logger.info("Thread started.")

    stop_event = app_state.plugin_stop_events.get(instance_id)
    wake_event = app_state.manual_poll_events.get(instance_id)
    if not stop_event or not wake_event:
        thread_logger.error("Could not find its stop/manual poll events in AppState. Thread exiting.")
        return

    plugin_inst = app_state.active_plugin_instances.get(instance_id)
    if plugin_inst:
        # make the initial state ('initialized' or 'disabled') visible to consumers
        _publish_snapshot(instance_id, plugin_inst.readings.snapshot() if hasattr(plugin_inst, 'readings') else {}, app_state, data_queue)
    run_now = bool(plugin_inst and plugin_inst.poll_interval > 0)

    while app_state.running and not stop_event.is_set():
        cycle_start_time = time.monotonic()
        plugin_inst = app_state.active_plugin_instances.get(instance_id)
        if not plugin_inst:
            thread_logger.error("Plugin instance disappeared from active list. Thread exiting.")
            break

        if run_now and not plugin_inst.is_disabled:
            try:
                snapshot = plugin_inst.run_cycle()
                _publish_snapshot(instance_id, snapshot, app_state, data_queue)
                thread_logger.debug(f"Cycle finished in {time.monotonic() - cycle_start_time:.3f}s, status '{plugin_inst.connection_status}'.")
            except Exception as e:
                thread_logger.error(f"Unhandled exception in poll loop: {e}", exc_info=True)

        interval = plugin_inst.poll_interval
        if plugin_inst.is_disabled or interval <= 0:
            wait_timeout = None
        else:
            wait_timeout = max(0.1, interval - (time.monotonic() - cycle_start_time))
        if wake_event.wait(timeout=wait_timeout):
            wake_event.clear()
        run_now = True

    plugin_inst = app_state.active_plugin_instances.get(instance_id)
    if plugin_inst:
        thread_logger.info("Stop event received, disconnecting plugin...")
        try:
            plugin_inst.disconnect()
        except Exception as e:
            thread_logger.error(f"Error during self-disconnect: {e}")
    thread_logger.info("Thread stopped gracefully.")

def request_manual_poll(instance_id: str, app_state: AppState) -> bool:
    """
    Requests an immediate cycle for one instance.

    Returns:
        bool: False if the instance is unknown.
    """
    wake_event = app_state.manual_poll_events.get(instance_id)
    if wake_event is None:
        logger.warning(f"Manual poll requested for unknown instance '{instance_id}'.")
        return False
    logger.info(f"Manual poll requested for '{instance_id}'.")
    wake_event.set()
    return True

def request_manual_polls(app_state: AppState) -> List[str]:
    """Requests a cycle for every instance running in manual mode. Returns their names."""
    requested = []
    for instance_id, plugin_inst in app_state.active_plugin_instances.items():
        if plugin_inst.poll_interval <= 0 and not plugin_inst.is_disabled:
            if request_manual_poll(instance_id, app_state):
                requested.append(instance_id)
    return requested

def set_plugin_disabled(instance_id: str, disabled: bool, app_state: AppState) -> bool:
    """
    Switches an instance off or back on at runtime and wakes its poll thread.

    Returns:
        bool: False if the instance is unknown or cannot be disabled.
    """
    plugin_inst = app_state.active_plugin_instances.get(instance_id)
    if plugin_inst is None or not hasattr(plugin_inst, 'set_disabled'):
        logger.warning(f"Cannot change disable state of instance '{instance_id}'.")
        return False
    plugin_inst.set_disabled(disabled)
    _publish_snapshot(instance_id, plugin_inst.readings.snapshot(), app_state, app_state.plugin_data_queue)
    wake_event = app_state.manual_poll_events.get(instance_id)
    if wake_event is not None:
        wake_event.set()
    return True

def start_plugin_polling_threads(app_state: AppState) -> List[threading.Thread]:
    """Creates and starts one poll thread per active plugin instance."""
    threads = []
    for name in app_state.active_plugin_instances:
        app_state.plugin_stop_events[name] = threading.Event()
        app_state.manual_poll_events[name] = threading.Event()
        thread = threading.Thread(
            target=poll_single_plugin_instance_thread,
            args=(name, app_state, app_state.plugin_data_queue),
            name=f"{PLUGIN_POLL_THREAD_NAME_PREFIX}_{name}", daemon=True
        )
        app_state.plugin_polling_threads[name] = thread
        thread.start()
        threads.append(thread)
    return threads

def stop_plugin_polling_threads(app_state: AppState, join_timeout: float = DEFAULT_THREAD_JOIN_TIMEOUT):
    """Signals every poll thread to stop and waits for them to finish."""
    for plugin_name, event in app_state.plugin_stop_events.items():
        logger.info(f"Stopping plugin thread: {plugin_name}")
        event.set()
        wake_event = app_state.manual_poll_events.get(plugin_name)
        if wake_event is not None:
            wake_event.set()

    for plugin_name, thread in app_state.plugin_polling_threads.items():
        if thread.is_alive():
            thread.join(timeout=join_timeout)
            if thread.is_alive():
                logger.warning(f"Plugin thread '{plugin_name}' did not stop gracefully")
