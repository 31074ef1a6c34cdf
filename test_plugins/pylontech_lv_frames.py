"""
Response frames of a Pylontech US2000C pack at address 1, shared by the
Pylontech test modules.

Frames are assembled from their INFO payload so that LENGTH and CHKSUM are
always consistent.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.pylontech_lv_plugin_constants import CommandKind
from plugins.battery.pylontech_lv_protocol import calculate_checksum, encode_length_field


def response_frame(info: str, rtn: str = "00", ver: str = "20", adr: str = "02", cid1: str = "46") -> str:
    body = f"{ver}{adr}{cid1}{rtn}{encode_length_field(info)}{info}"
    return f"~{body}{calculate_checksum(body)}\r"


def ascii_hex(text: str, size: int, pad: str = "\x00") -> str:
    return text.ljust(size, pad).encode("ascii").hex().upper()


SERIAL_NUMBER_INFO = "02" + ascii_hex("K221012345678901", 16)

MANUFACTURER_INFO = (
    ascii_hex("US2000C", 10)
    + "0302"  # software version 3.2
    + ascii_hex("PYLON", 20, " ")
)

SOFTWARE_VERSION_INFO = "02" + "0107" + "020A03"

SYSTEM_PARAMETERS_INFO = "11" + "".join([
    "0E74",  # cell high volt 3.7
    "0BB8",  # cell low volt 3.0
    "0A8C",  # cell under volt 2.7
    "0D03",  # charge high temp 60.0
    "0AAB",  # charge low temp 0.0
    "0064",  # charge current 10.0
    "D6D8",  # module high volt 55.0
    "AFC8",  # module low volt 45.0
    "9C40",  # module under volt 40.0
    "0D03",  # discharge high temp 60.0
    "09B1",  # discharge low temp -25.0
    "FF9B",  # discharge current 10.0
])

ALARM_INFO_OK = "00" + "02" + "0F" + "0" * 58

CHARGE_MANAGEMENT_INFO = "02" + "D002" + "AFC8" + "00FA" + "FF06" + "C0"

CELL_VOLTAGES_MV = [3300] * 15
CELL_VOLTAGES_MV[3] = 3310
CELL_VOLTAGES_MV[9] = 3290


def analog_info(user_defined: str = "02", current: str = "FFE7", tail: str = "", cell_count: str = "0F") -> str:
    # the layout always carries 15 cell slots, whatever the reported count
    return "".join([
        "00", "02", cell_count,
        "".join(f"{mv:04X}" for mv in CELL_VOLTAGES_MV),
        "05",
        "0BA5",  # BMS 25.0 C
        "0B9B", "0B9B", "0B9B", "0B9B",  # cells 24.0 C
        current,  # -2.5 A by default
        "C15C",  # 49.5 V
        "9088",  # 37.0 Ah remaining
        user_defined,
        "C350",  # 50.0 Ah capacity
        "0032",  # 50 cycles
        tail,
    ])


ANALOG_VALUE_INFO = analog_info()
# US3000 style layout: 6 digit capacities after the cycle count
ANALOG_VALUE_INFO_LARGE = analog_info("04", tail="01A5E0" + "01D4C0")

PROTOCOL_VERSION_FRAME = response_frame("", ver="35")

RESPONSES = {
    CommandKind.SERIAL_NUMBER: response_frame(SERIAL_NUMBER_INFO),
    CommandKind.MANUFACTURER_INFO: response_frame(MANUFACTURER_INFO),
    CommandKind.PROTOCOL_VERSION: PROTOCOL_VERSION_FRAME,
    CommandKind.SOFTWARE_VERSION: response_frame(SOFTWARE_VERSION_INFO),
    CommandKind.SYSTEM_PARAMETERS: response_frame(SYSTEM_PARAMETERS_INFO),
    CommandKind.ALARM_INFO: response_frame(ALARM_INFO_OK),
    CommandKind.CHARGE_MANAGEMENT_INFO: response_frame(CHARGE_MANAGEMENT_INFO),
    CommandKind.ANALOG_VALUE: response_frame(ANALOG_VALUE_INFO),
}
