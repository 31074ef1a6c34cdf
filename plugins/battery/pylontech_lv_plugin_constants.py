# plugins/battery/pylontech_lv_plugin_constants.py
"""
Constants and command definitions for Pylontech low-voltage LiFePO4 batteries
(US2000, US3000, US5000 and compatible packs) queried over the RS485 console
protocol.

Every request is an ASCII frame:

    SOI  VER  ADR  CID1  CID2  LENGTH  INFO  CHKSUM  EOI
    ~    20   02   46    93    E002    02    FD2D    CR

All fields except SOI/EOI are transferred as hexadecimal ASCII, two characters
per byte. The pack address ADR is 0x02 for the first pack in the daisy-chain,
0x03 for the second, and so on.

Key Components:
- Command table (CID1/CID2 pair, protocol version and minimum response length)
- Return code descriptions reported by the BMS
- Reading names written to the ReadingSet
- Plugin defaults

Protocol Reference: Pylontech RS485 protocol V3.3 / LFP protocol V2.8
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

# --- Frame layout ---
SOI = "~"
EOI = "\r"
COMMAND_VER = "20"
PROTOCOL_VERSION_QUERY_VER = "00"  # the protocol version query itself is sent with VER 00
PC_COMMAND_CID1 = 0x46
FIRST_PACK_ADR = 0x02

RETURN_CODE_OFFSET = 7
RETURN_CODE_MIN_FRAME_LENGTH = 10
MAX_RESPONSE_LENGTH = 1024  # safety net for a bridge streaming noise without a CR

MIN_BATTERY_ADDRESS = 1
MAX_BATTERY_ADDRESS = 0xFF - FIRST_PACK_ADR + 1

# Characters that may appear in a response frame; everything else is bus noise.
ALLOWED_RESPONSE_CHARS = frozenset("~ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789\r")
RESPONSE_SHAPE_PATTERN = r"~[~A-Z0-9]*\r"  # matched against the whole response


@dataclass(frozen=True)
class CommandSpec:
    """Wire metadata for one read command."""
    label: str
    ver: str
    cid1: int
    cid2: int
    min_response_length: int
    static: bool


class CommandKind(Enum):
    """Read commands in the order a poll cycle issues them."""
    SERIAL_NUMBER = CommandSpec("serialNumber", COMMAND_VER, PC_COMMAND_CID1, 0x93, 52, True)
    MANUFACTURER_INFO = CommandSpec("manufacturerInfo", COMMAND_VER, PC_COMMAND_CID1, 0x51, 82, True)
    PROTOCOL_VERSION = CommandSpec("protocolVersion", PROTOCOL_VERSION_QUERY_VER, PC_COMMAND_CID1, 0x4F, 18, True)
    SOFTWARE_VERSION = CommandSpec("softwareVersion", COMMAND_VER, PC_COMMAND_CID1, 0x96, 30, True)
    SYSTEM_PARAMETERS = CommandSpec("systemParameters", COMMAND_VER, PC_COMMAND_CID1, 0x47, 68, True)
    ALARM_INFO = CommandSpec("alarmInfo", COMMAND_VER, PC_COMMAND_CID1, 0x44, 82, False)
    CHARGE_MANAGEMENT_INFO = CommandSpec("chargeManagementInfo", COMMAND_VER, PC_COMMAND_CID1, 0x92, 38, False)
    ANALOG_VALUE = CommandSpec("analogValue", COMMAND_VER, PC_COMMAND_CID1, 0x42, 128, False)

    @property
    def label(self) -> str:
        return self.value.label

    @property
    def min_response_length(self) -> int:
        return self.value.min_response_length

    @property
    def is_static(self) -> bool:
        return self.value.static


STATIC_COMMANDS = tuple(kind for kind in CommandKind if kind.is_static)
DYNAMIC_COMMANDS = tuple(kind for kind in CommandKind if not kind.is_static)

# --- Return codes ---
RETURN_CODE_NORMAL = "00"
RETURN_CODE_TOO_SHORT = "98"
RETURN_CODE_INVALID = "99"

RETURN_CODES = MappingProxyType({
    "00": "normal",
    "01": "VER error",
    "02": "CHKSUM error",
    "03": "LCHKSUM error",
    "04": "CID2 invalidation error",
    "05": "Command format error",
    "06": "invalid data error",
    "90": "ADR error",
    "91": "Communication error between Master and Slave Pack",
    # synthesized locally, never sent by the BMS
    "98": "insufficient response length <LEN> of minimum length <MLEN> received ... discarded",
    "99": "invalid data received ... discarded",
})
LOCAL_RETURN_CODES = frozenset({RETURN_CODE_TOO_SHORT, RETURN_CODE_INVALID})

# --- Status texts ---
MSG_NO_CONNECTION = "no connection is established to RS485 gateway"
MSG_READ_TIMEOUT = "Timeout reading data from battery"
MSG_CYCLE_TIMEOUT = "Timeout in communication to RS485 gateway"
MSG_UNSUPPORTED_VARIANT = "wrong value retrieve analogValue -> user defined items: {value}"

# --- Reading names ---

KEY_SERIAL_NUMBER = "serialNumber"
KEY_BATTERY_TYPE = "batteryType"
KEY_SOFTWARE_VERSION = "softwareVersion"
KEY_MANUFACTURER = "Manufacturer"
KEY_PROTOCOL_VERSION = "protocolVersion"
KEY_MODULE_SW_MANUFACTURE = "moduleSoftwareVersion_manufacture"
KEY_MODULE_SW_MAINLINE = "moduleSoftwareVersion_mainline"

KEY_PACK_CELL_COUNT = "packCellcount"
KEY_PACK_ALARM_INFO = "packAlarmInfo"

KEY_CHARGE_VOLTAGE_LIMIT = "chargeVoltageLimit"
KEY_DISCHARGE_VOLTAGE_LIMIT = "dischargeVoltageLimit"
KEY_CHARGE_CURRENT_LIMIT = "chargeCurrentLimit"
KEY_DISCHARGE_CURRENT_LIMIT = "dischargeCurrentLimit"

KEY_CELL_VOLTAGE_PREFIX = "cellVoltage_"
KEY_BMS_TEMPERATURE = "bmsTemperature"
KEY_PACK_CURRENT = "packCurrent"
KEY_PACK_VOLT = "packVolt"
KEY_PACK_CYCLES = "packCycles"
KEY_PACK_CAPACITY_REMAIN = "packCapacityRemain"
KEY_PACK_CAPACITY = "packCapacity"

KEY_AVERAGE_CELL_VOLT = "averageCellVolt"
KEY_PACK_SOC = "packSOC"
KEY_PACK_POWER = "packPower"
KEY_PACK_IMBALANCE = "packImbalance"
KEY_PACK_STATE = "packState"

PACK_STATE_CHARGING = "charging"
PACK_STATE_DISCHARGING = "discharging"
PACK_STATE_IDLE = "idle"

# --- SystemParameters layout: (reading, offset, scaling) ---
# Scalings: "volt" /1000, "temp" (v-2731)/10, "current" v*100/1000,
# "neg_current" (65535-v)*100/1000.
SYSTEM_PARAMETER_FIELDS = (
    ("paramCellHighVoltLimit", 15, "volt"),
    ("paramCellLowVoltLimit", 19, "volt"),
    ("paramCellUnderVoltLimit", 23, "volt"),
    ("paramChargeHighTempLimit", 27, "temp"),
    ("paramChargeLowTempLimit", 31, "temp"),
    ("paramChargeCurrentLimit", 35, "current"),
    ("paramModuleHighVoltLimit", 39, "volt"),
    ("paramModuleLowVoltLimit", 43, "volt"),
    ("paramModuleUnderVoltLimit", 47, "volt"),
    ("paramDischargeHighTempLimit", 51, "temp"),
    ("paramDischargeLowTempLimit", 55, "temp"),
    ("paramDischargeCurrentLimit", 59, "neg_current"),
)

# --- AlarmInfo: (offset, length) ranges that must be all zeros for "ok" ---
ALARM_ZERO_RANGES = ((19, 30), (51, 10), (67, 2), (73, 4))

# --- ChargeManagementInfo status byte, MSB first ---
CHARGE_STATUS_FLAGS = (
    "chargeEnable",
    "dischargeEnable",
    "chargeImmediatelySOC05",
    "chargeImmediatelySOC09",
    "chargeFullRequest",
)

# --- AnalogValue layout ---
ANALOG_CELL_COUNT_OFFSET = 17
ANALOG_FIRST_CELL_OFFSET = 19
ANALOG_MAX_CELLS = 15
ANALOG_TEMPERATURE_FIELDS = (
    (KEY_BMS_TEMPERATURE, 81),
    ("cellTemperature_0104", 85),
    ("cellTemperature_0508", 89),
    ("cellTemperature_0912", 93),
    ("cellTemperature_1315", 97),
)
ANALOG_CURRENT_OFFSET = 101
ANALOG_VOLTAGE_OFFSET = 105
ANALOG_USER_DEFINED_OFFSET = 113
ANALOG_CYCLES_OFFSET = 119

# user defined item -> ((remain offset, width), (capacity offset, width))
# 2: packs up to 65 Ah (US2000), 4: larger packs (US3000 and up)
ANALOG_CAPACITY_LAYOUTS = MappingProxyType({
    2: ((109, 4), (115, 4)),
    4: ((123, 6), (129, 6)),
})

TEMPERATURE_OFFSET_DECIKELVIN = 2731

# --- Plugin defaults ---
DEFAULT_TCP_PORT_PYLON = 8888
DEFAULT_BAUD_RATE_PYLON = 9600
DEFAULT_BATTERY_ADDRESS = 1
DEFAULT_TIMEOUT_SECONDS = 0.5
READ_TIMEOUT_MARGIN_SECONDS = 0.05
MIN_READ_TIMEOUT_SECONDS = 0.005
STATIC_DATA_MAX_AGE_SECONDS = 60
MISSING_READING_AGE_SECONDS = 601
