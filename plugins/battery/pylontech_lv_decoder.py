# plugins/battery/pylontech_lv_decoder.py
"""
Payload decoding for validated Pylontech low-voltage response frames.

Offsets are character positions in the complete ASCII frame (SOI at offset 0).
Multi-character fields are unsigned big-endian hex integers unless noted.
"""

from typing import Any, Callable, Dict

from .pylontech_lv_plugin_constants import (
    ALARM_ZERO_RANGES,
    ANALOG_CAPACITY_LAYOUTS,
    ANALOG_CELL_COUNT_OFFSET,
    ANALOG_CURRENT_OFFSET,
    ANALOG_CYCLES_OFFSET,
    ANALOG_FIRST_CELL_OFFSET,
    ANALOG_MAX_CELLS,
    ANALOG_TEMPERATURE_FIELDS,
    ANALOG_USER_DEFINED_OFFSET,
    ANALOG_VOLTAGE_OFFSET,
    CHARGE_STATUS_FLAGS,
    KEY_AVERAGE_CELL_VOLT,
    KEY_BATTERY_TYPE,
    KEY_CELL_VOLTAGE_PREFIX,
    KEY_CHARGE_CURRENT_LIMIT,
    KEY_CHARGE_VOLTAGE_LIMIT,
    KEY_DISCHARGE_CURRENT_LIMIT,
    KEY_DISCHARGE_VOLTAGE_LIMIT,
    KEY_MANUFACTURER,
    KEY_MODULE_SW_MAINLINE,
    KEY_MODULE_SW_MANUFACTURE,
    KEY_PACK_ALARM_INFO,
    KEY_PACK_CAPACITY,
    KEY_PACK_CAPACITY_REMAIN,
    KEY_PACK_CELL_COUNT,
    KEY_PACK_CURRENT,
    KEY_PACK_CYCLES,
    KEY_PACK_IMBALANCE,
    KEY_PACK_POWER,
    KEY_PACK_SOC,
    KEY_PACK_STATE,
    KEY_PACK_VOLT,
    KEY_PROTOCOL_VERSION,
    KEY_SERIAL_NUMBER,
    KEY_SOFTWARE_VERSION,
    PACK_STATE_CHARGING,
    PACK_STATE_DISCHARGING,
    PACK_STATE_IDLE,
    SYSTEM_PARAMETER_FIELDS,
    TEMPERATURE_OFFSET_DECIKELVIN,
    CommandKind,
)
from .pylontech_lv_exceptions import (
    MalformedResponseError,
    ResponseTooShortError,
    UnsupportedVariantError,
)


def _hex_int(frame: str, offset: int, width: int) -> int:
    end = offset + width
    # the final character is the CR terminator and never part of a field
    if end > len(frame) - 1:
        raise ResponseTooShortError(len(frame), end + 1)
    try:
        return int(frame[offset:end], 16)
    except ValueError:
        raise MalformedResponseError(frame) from None


def _hex_text(frame: str, offset: int, width: int) -> str:
    end = offset + width
    if end > len(frame) - 1:
        raise ResponseTooShortError(len(frame), end + 1)
    try:
        raw = bytes.fromhex(frame[offset:end])
    except ValueError:
        raise MalformedResponseError(frame) from None
    return raw.decode("ascii", errors="replace").replace("\x00", "").strip()


def _version(*parts: int) -> str:
    return "V" + ".".join(str(part) for part in parts)


def _temperature(raw: int) -> float:
    return round((raw - TEMPERATURE_OFFSET_DECIKELVIN) / 10, 1)


def _decode_serial_number(frame: str) -> Dict[str, Any]:
    return {KEY_SERIAL_NUMBER: _hex_text(frame, 15, 32)}


def _decode_manufacturer_info(frame: str) -> Dict[str, Any]:
    return {
        KEY_BATTERY_TYPE: _hex_text(frame, 13, 20),
        KEY_SOFTWARE_VERSION: _version(_hex_int(frame, 33, 2), _hex_int(frame, 35, 2)),
        KEY_MANUFACTURER: _hex_text(frame, 37, 40),
    }


def _decode_protocol_version(frame: str) -> Dict[str, Any]:
    return {KEY_PROTOCOL_VERSION: _version(_hex_int(frame, 1, 1), _hex_int(frame, 2, 1))}


def _decode_software_version(frame: str) -> Dict[str, Any]:
    return {
        KEY_MODULE_SW_MANUFACTURE: _version(_hex_int(frame, 15, 2), _hex_int(frame, 17, 2)),
        KEY_MODULE_SW_MAINLINE: _version(_hex_int(frame, 19, 2), _hex_int(frame, 21, 2), _hex_int(frame, 23, 2)),
    }


_PARAMETER_SCALINGS: Dict[str, Callable[[int], float]] = {
    "volt": lambda raw: round(raw / 1000, 3),
    "temp": _temperature,
    "current": lambda raw: round(raw * 100 / 1000, 3),
    "neg_current": lambda raw: round((65535 - raw) * 100 / 1000, 3),
}


def _decode_system_parameters(frame: str) -> Dict[str, Any]:
    return {
        name: _PARAMETER_SCALINGS[scaling](_hex_int(frame, offset, 4))
        for name, offset, scaling in SYSTEM_PARAMETER_FIELDS
    }


def _decode_alarm_info(frame: str) -> Dict[str, Any]:
    # Coarse classification: any set alarm/protection digit means "failure".
    cell_count = _hex_int(frame, 17, 2)
    all_clear = all(frame[offset:offset + length] == "0" * length for offset, length in ALARM_ZERO_RANGES)
    return {
        KEY_PACK_CELL_COUNT: cell_count,
        KEY_PACK_ALARM_INFO: "ok" if all_clear else "failure",
    }


def _decode_charge_management_info(frame: str) -> Dict[str, Any]:
    readings: Dict[str, Any] = {
        KEY_CHARGE_VOLTAGE_LIMIT: round(_hex_int(frame, 15, 4) / 1000, 3),
        KEY_DISCHARGE_VOLTAGE_LIMIT: round(_hex_int(frame, 19, 4) / 1000, 3),
        KEY_CHARGE_CURRENT_LIMIT: round(_hex_int(frame, 23, 4) / 10, 1),
        KEY_DISCHARGE_CURRENT_LIMIT: round((65536 - _hex_int(frame, 27, 4)) / 10, 1),
    }
    status_bits = f"{_hex_int(frame, 31, 2):08b}"
    for position, name in enumerate(CHARGE_STATUS_FLAGS):
        readings[name] = "yes" if status_bits[position] == "1" else "no"
    return readings


def _decode_analog_value(frame: str) -> Dict[str, Any]:
    cell_count = _hex_int(frame, ANALOG_CELL_COUNT_OFFSET, 2)
    readings: Dict[str, Any] = {KEY_PACK_CELL_COUNT: cell_count}

    for index in range(min(cell_count, ANALOG_MAX_CELLS)):
        raw_mv = _hex_int(frame, ANALOG_FIRST_CELL_OFFSET + 4 * index, 4)
        readings[f"{KEY_CELL_VOLTAGE_PREFIX}{index + 1:02d}"] = round(raw_mv / 1000, 3)

    for name, offset in ANALOG_TEMPERATURE_FIELDS:
        readings[name] = _temperature(_hex_int(frame, offset, 4))

    current = _hex_int(frame, ANALOG_CURRENT_OFFSET, 4)
    if current & 0x8000:
        current -= 0x10000
    readings[KEY_PACK_CURRENT] = round(current / 10, 1)
    readings[KEY_PACK_VOLT] = round(_hex_int(frame, ANALOG_VOLTAGE_OFFSET, 4) / 1000, 3)

    user_defined = _hex_int(frame, ANALOG_USER_DEFINED_OFFSET, 2)
    layout = ANALOG_CAPACITY_LAYOUTS.get(user_defined)
    if layout is None:
        raise UnsupportedVariantError(user_defined)

    readings[KEY_PACK_CYCLES] = _hex_int(frame, ANALOG_CYCLES_OFFSET, 4)
    (remain_offset, remain_width), (capacity_offset, capacity_width) = layout
    readings[KEY_PACK_CAPACITY_REMAIN] = round(_hex_int(frame, remain_offset, remain_width) / 1000, 3)
    readings[KEY_PACK_CAPACITY] = round(_hex_int(frame, capacity_offset, capacity_width) / 1000, 3)
    return readings


_DECODERS: Dict[CommandKind, Callable[[str], Dict[str, Any]]] = {
    CommandKind.SERIAL_NUMBER: _decode_serial_number,
    CommandKind.MANUFACTURER_INFO: _decode_manufacturer_info,
    CommandKind.PROTOCOL_VERSION: _decode_protocol_version,
    CommandKind.SOFTWARE_VERSION: _decode_software_version,
    CommandKind.SYSTEM_PARAMETERS: _decode_system_parameters,
    CommandKind.ALARM_INFO: _decode_alarm_info,
    CommandKind.CHARGE_MANAGEMENT_INFO: _decode_charge_management_info,
    CommandKind.ANALOG_VALUE: _decode_analog_value,
}


def decode_response(kind: CommandKind, frame: str) -> Dict[str, Any]:
    """
    Decodes a validated response frame into named readings.

    Args:
        kind: The command the frame answers.
        frame: A frame that passed ``validate_response``.

    Returns:
        A new dictionary of reading name -> value.

    Raises:
        UnsupportedVariantError: Analog value frame with a capacity layout
            selector other than 2 or 4.
        ResponseTooShortError: A field extends past the end of the frame.
        MalformedResponseError: A field holds non-hex characters.
    """
    return _DECODERS[kind](frame)


def compute_derived_readings(readings: Dict[str, Any]) -> Dict[str, Any]:
    """
    Computes the pack values that are not reported directly by the BMS.

    Args:
        readings: The readings decoded during the current cycle.

    Returns:
        A dictionary with ``averageCellVolt``, ``packSOC``, ``packPower``,
        ``packImbalance`` and ``packState``; a value is left out when its
        inputs are missing or would divide by zero.
    """
    derived: Dict[str, Any] = {}
    pack_volt = readings.get(KEY_PACK_VOLT)
    pack_current = readings.get(KEY_PACK_CURRENT)
    cell_count = readings.get(KEY_PACK_CELL_COUNT)

    average_cell_volt = None
    if cell_count and pack_volt is not None:
        average_cell_volt = round(pack_volt / cell_count, 3)
        derived[KEY_AVERAGE_CELL_VOLT] = average_cell_volt

    capacity = readings.get(KEY_PACK_CAPACITY)
    remaining = readings.get(KEY_PACK_CAPACITY_REMAIN)
    if capacity and remaining is not None:
        derived[KEY_PACK_SOC] = round(remaining / capacity * 100, 2)

    if pack_current is not None and pack_volt is not None:
        derived[KEY_PACK_POWER] = round(pack_current * pack_volt, 2)

    cell_voltages = [
        readings[key] for key in (f"{KEY_CELL_VOLTAGE_PREFIX}{i:02d}" for i in range(1, (cell_count or 0) + 1))
        if readings.get(key) is not None
    ]
    if cell_voltages and average_cell_volt:
        spread = max(cell_voltages) - min(cell_voltages)
        derived[KEY_PACK_IMBALANCE] = round(100 * spread / average_cell_volt, 3)

    if pack_current is not None:
        if pack_current < 0:
            derived[KEY_PACK_STATE] = PACK_STATE_DISCHARGING
        elif pack_current > 0:
            derived[KEY_PACK_STATE] = PACK_STATE_CHARGING
        else:
            derived[KEY_PACK_STATE] = PACK_STATE_IDLE
    return derived
