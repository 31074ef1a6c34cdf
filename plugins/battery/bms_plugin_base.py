# plugins/battery/bms_plugin_base.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type, TYPE_CHECKING
if TYPE_CHECKING:
    from core.app_state import AppState
import logging
import threading
import time

from core.reading_store import ReadingStore
from utils.helpers import (
    NEXT_CYCLE_MANUAL, STATUS_CONNECTED, STATUS_DISABLED, STATUS_INITIALIZED,
    STATUS_CONFIG_ERROR, STATUS_UNEXPECTED_ERROR, format_clock_time,
)

from ..plugin_interface import DevicePlugin, parse_config_bool, parse_config_float

# Reading names every BMS plugin maintains
BMS_KEY_STATE = "state"
BMS_KEY_NEXT_CYCLE_TIME = "nextCycletime"

# Readings that survive a failed cycle
BMS_PROTECTED_READING_KEYS = frozenset({BMS_KEY_STATE, BMS_KEY_NEXT_CYCLE_TIME})

class BMSPluginBase(DevicePlugin, ABC):
    """
    Abstract Base Class for Battery Management System (BMS) plugins.

    This class owns the poll cycle envelope shared by all BMS plugins: the
    per-instance `ReadingStore`, the `disable` switch and the poll interval.
    Concrete plugins implement `poll_device`, which talks to the hardware and
    fills the cycle's ReadingSet; this base class then commits the outcome.

    A cycle either commits everything it collected together with
    ``state = "connected"``, or, when `poll_device` raises, deletes every
    reading except the protected ones and commits ``state = <error text>``.
    Readers never observe a partially written cycle.
    """

    # Exceptions whose str() is a ready-made status text; anything else is
    # reported as an unexpected error.
    expected_cycle_errors: Tuple[Type[BaseException], ...] = ()

    # Reading name prefixes whose readings are rewritten as a group by every
    # successful cycle; stored ones the cycle did not produce are deleted.
    cycle_reading_prefixes: Tuple[str, ...] = ()

    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger, app_state: Optional['AppState'] = None, reading_store: Optional[ReadingStore] = None):
        """
        Initializes the BMSPluginBase.

        Args:
            instance_name (str): The unique name for this plugin instance.
            plugin_specific_config (Dict[str, Any]): A dictionary containing configuration
                                                     parameters specific to this plugin.
            main_logger (logging.Logger): The main logger instance for the application.
            app_state (Optional[AppState]): The central application state object.
            reading_store (Optional[ReadingStore]): Store for committed readings; a new
                                                    one is created when omitted.
        """
        super().__init__(instance_name, plugin_specific_config, main_logger, app_state)
        self.readings = reading_store if reading_store is not None else ReadingStore()
        self.last_error_message: Optional[str] = None
        self._cycle_lock = threading.Lock()
        self._disabled = parse_config_bool(plugin_specific_config, "disable", False)
        # Set when the instance configuration is unusable; every cycle then reports it.
        self.config_error: Optional[str] = None
        try:
            self._interval = parse_config_float(plugin_specific_config, "interval", self._default_interval())
        except ValueError:
            self._interval = self._default_interval()
            self.set_config_error(f"invalid interval '{plugin_specific_config.get('interval')}'")
        if self._interval < 0:
            self.logger.warning(f"BMS Plugin '{self.instance_name}': negative interval {self._interval}s, using manual polling.")
            self._interval = 0.0
        self.readings.commit({BMS_KEY_STATE: STATUS_DISABLED if self._disabled else STATUS_INITIALIZED})

    def set_config_error(self, detail: str) -> None:
        """Marks the instance as misconfigured. Only the first problem is kept."""
        self.logger.error(f"BMS Plugin '{self.instance_name}': configuration error: {detail}")
        if self.config_error is None:
            self.config_error = f"{STATUS_CONFIG_ERROR}: {detail}"
            self.last_error_message = self.config_error

    def _default_interval(self) -> float:
        if self.app_state is not None:
            return float(self.app_state.poll_interval)
        return 0.0

    @property
    def poll_interval(self) -> float:
        return self._interval

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    @staticmethod
    @abstractmethod
    def get_configurable_params() -> List[Dict[str, Any]]:
        """
        Returns a list of configuration parameters that this plugin supports.

        Returns:
            List[Dict[str, Any]]: A list of dictionaries, where each dictionary
                                  describes a configurable parameter.
        """
        pass

    @abstractmethod
    def poll_device(self, reading_set: Dict[str, Any]) -> None:
        """
        Runs the device exchanges of one cycle, adding decoded readings to `reading_set`.

        Must raise on the first failed exchange; whatever is already in
        `reading_set` is then discarded by the caller.
        """
        pass

    def next_cycle_time_text(self) -> str:
        if self._interval <= 0:
            return NEXT_CYCLE_MANUAL
        return format_clock_time(time.time() + self._interval)

    def run_cycle(self) -> Dict[str, Any]:
        """
        Runs one poll cycle and commits its outcome.

        Returns:
            Dict[str, Any]: Snapshot of all committed readings after the cycle.
        """
        with self._cycle_lock:
            # read under the lock that set_disabled() holds while switching
            if self._disabled:
                self.logger.debug(f"BMS Plugin '{self.instance_name}': disabled, skipping cycle.")
                return self.readings.snapshot()

            reading_set: Dict[str, Any] = {BMS_KEY_NEXT_CYCLE_TIME: self.next_cycle_time_text()}
            if self.config_error:
                return self._commit_failure(reading_set, self.config_error)
            try:
                self.poll_device(reading_set)
            except self.expected_cycle_errors as e:
                self.logger.warning(f"BMS Plugin '{self.instance_name}': cycle aborted: {e}")
                return self._commit_failure(reading_set, str(e))
            except Exception as e:
                self.logger.error(f"BMS Plugin '{self.instance_name}': unexpected error during cycle: {e}", exc_info=True)
                return self._commit_failure(reading_set, STATUS_UNEXPECTED_ERROR.format(error=e))
            return self._commit_success(reading_set)

    def _commit_success(self, reading_set: Dict[str, Any]) -> Dict[str, Any]:
        reading_set[BMS_KEY_STATE] = STATUS_CONNECTED
        self.last_error_message = None
        self.connection_status = STATUS_CONNECTED
        snapshot = self.readings.commit(reading_set, replace_prefixes=self.cycle_reading_prefixes)
        self.logger.debug(f"BMS Plugin '{self.instance_name}': committed {len(reading_set)} readings.")
        return snapshot

    def _commit_failure(self, reading_set: Dict[str, Any], message: str) -> Dict[str, Any]:
        self.disconnect()
        self.last_error_message = message
        self.connection_status = message
        failure_set = {key: value for key, value in reading_set.items() if key in BMS_PROTECTED_READING_KEYS}
        failure_set[BMS_KEY_STATE] = message
        return self.readings.commit(failure_set, keep_only=BMS_PROTECTED_READING_KEYS)

    def set_disabled(self, disabled: bool) -> None:
        """
        Switches the instance off or back on at runtime.

        Disabling closes the connection and removes every reading, leaving
        only ``state = "disabled"``. Enabling sets ``state = "initialized"``;
        the next scheduled cycle reconnects.
        """
        with self._cycle_lock:
            self._disabled = bool(disabled)
            if self._disabled:
                self.disconnect()
                self.readings.clear()
                self.readings.commit({BMS_KEY_STATE: STATUS_DISABLED})
                self.logger.info(f"BMS Plugin '{self.instance_name}': disabled.")
            else:
                self.readings.commit({BMS_KEY_STATE: STATUS_INITIALIZED})
                self.logger.info(f"BMS Plugin '{self.instance_name}': enabled.")
