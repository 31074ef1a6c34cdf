# utils/helpers.py
import logging
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

# --- Status Constants ---
STATUS_NA = "N/A"
STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_CONNECTED = "connected"
STATUS_DISABLED = "disabled"
STATUS_INITIALIZED = "initialized"
STATUS_UNEXPECTED_ERROR = "unexpected error: {error}"
STATUS_CONFIG_ERROR = "Plugin configuration error"

NEXT_CYCLE_MANUAL = "Manual"

# --- Formatting Functions ---
def format_value(value: Any, precision: int = 2) -> str:
    """
    Formats a numeric value to a string with specified precision.

    Args:
        value: The value to format (int, float, or other type)
        precision: Number of decimal places for floating point values

    Returns:
        Formatted string representation of the value, or "N/A" if None
    """
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.{precision}f}"
    if value is None:
        return STATUS_NA
    return str(value)

def format_clock_time(timestamp: Optional[float] = None) -> str:
    """Local wall-clock time as HH:MM:SS, for `timestamp` or now."""
    return time.strftime("%H:%M:%S", time.localtime(timestamp if timestamp is not None else time.time()))

