# plugins/plugin_interface.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING
import logging # Use standard logging

if TYPE_CHECKING:
    from core.app_state import AppState

def parse_config_int(config_dict: Dict[str, Any], key: str, default: int) -> int:
    """
    Parse an integer configuration value, handling comments and whitespace.
    
    Args:
        config_dict: The configuration dictionary
        key: The configuration key to parse
        default: Default value if key is not found
        
    Returns:
        The parsed integer value
        
    Example:
        # Handles values like "115200 ; comment" or "115200"
        baud_rate = parse_config_int(config, "baud_rate", 9600)
    """
    value_str = str(config_dict.get(key, default))
    # Strip comments (everything after ';') and whitespace
    clean_value = value_str.split(';')[0].strip()
    return int(clean_value)

def parse_config_float(config_dict: Dict[str, Any], key: str, default: float) -> float:
    """
    Parse a float configuration value, handling comments and whitespace.
    
    Args:
        config_dict: The configuration dictionary
        key: The configuration key to parse
        default: Default value if key is not found
        
    Returns:
        The parsed float value
    """
    value_str = str(config_dict.get(key, default))
    # Strip comments (everything after ';') and whitespace
    clean_value = value_str.split(';')[0].strip()
    return float(clean_value)

def parse_config_str(config_dict: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Parse a string configuration value, handling comments and whitespace.
    
    Args:
        config_dict: The configuration dictionary
        key: The configuration key to parse
        default: Default value if key is not found
        
    Returns:
        The parsed string value, or None if not found and no default
    """
    value = config_dict.get(key, default)
    if value is None:
        return None
    value_str = str(value)
    # Strip comments (everything after ';') and whitespace
    clean_value = value_str.split(';')[0].strip()
    return clean_value if clean_value else None

def parse_config_bool(config_dict: Dict[str, Any], key: str, default: bool = False) -> bool:
    """
    Parse a boolean configuration value, handling comments and whitespace.

    Accepts "1", "true", "yes" and "on" (case-insensitive) as True.
    """
    value = config_dict.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    clean_value = str(value).split(';')[0].strip().lower()
    if not clean_value:
        return default
    return clean_value in ('1', 'true', 'yes', 'on')


class DevicePlugin(ABC):
    """
    Abstract Base Class for all device plugins.

    The host application only knows this interface: it loads a concrete
    subclass per configured instance, runs one poll thread per instance and
    calls `run_cycle` on the plugin's schedule. Everything a cycle learns is
    committed by the plugin itself; `run_cycle` returns the committed snapshot
    so the host can hand it on to consumers.
    """
    def __init__(self, instance_name: str, plugin_specific_config: Dict[str, Any], main_logger: logging.Logger, app_state: Optional['AppState'] = None):
        """
        Initialize the plugin with its specific configuration and the main application logger.
        'instance_name' is a unique identifier for this plugin instance (e.g., "battery_1").
        'plugin_specific_config' is a dictionary derived from the main config.ini
        (all keys from the [PLUGIN_<instance_name>] section).
        """
        self.instance_name = instance_name
        self.plugin_config = plugin_specific_config
        self.logger = main_logger
        self.app_state = app_state
        self._is_connected_flag: bool = False # Common flag, managed by plugin's connect/disconnect
        self.connection_status: str = "Initializing"

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the unique type name of this plugin (e.g., 'pylontech_lv')."""
        pass

    @property
    @abstractmethod
    def pretty_name(self) -> str:
        """Return a human-friendly name for the plugin type."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the device. Returns True if connected."""
        return self._is_connected_flag

    @property
    def poll_interval(self) -> float:
        """Seconds between cycles; 0 means cycles only run when requested manually."""
        if self.app_state is not None:
            return self.app_state.poll_interval
        return 0

    @property
    def is_disabled(self) -> bool:
        """True while the instance is switched off by configuration."""
        return False

    @abstractmethod
    def connect(self) -> bool:
        """
        Establish connection to the device.
        MUST set self._is_connected_flag = True on success.
        Returns True on success, False on failure.
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """
        Disconnect from the device.
        MUST set self._is_connected_flag = False.
        """
        pass

    @abstractmethod
    def run_cycle(self) -> Dict[str, Any]:
        """
        Run one complete poll cycle against the device and commit its result.

        MUST NOT raise for device or communication errors; the outcome is
        reported through the committed readings instead.
        Returns a snapshot of all committed readings after the cycle.
        """
        pass
