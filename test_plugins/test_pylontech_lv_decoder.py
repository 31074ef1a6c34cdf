#!/usr/bin/env python3
"""
Tests for decoding Pylontech low-voltage response payloads and for the derived
pack values.

Usage:
    python test_plugins/test_pylontech_lv_decoder.py
"""

import sys
import os
import unittest

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.pylontech_lv_decoder import compute_derived_readings, decode_response
from plugins.battery.pylontech_lv_plugin_constants import CommandKind
from plugins.battery.pylontech_lv_protocol import validate_response
from plugins.battery.pylontech_lv_exceptions import (
    MalformedResponseError,
    ResponseTooShortError,
    UnsupportedVariantError,
)
from test_plugins.pylontech_lv_frames import (
    ALARM_INFO_OK,
    ANALOG_VALUE_INFO_LARGE,
    CHARGE_MANAGEMENT_INFO,
    RESPONSES,
    analog_info,
    response_frame,
)


def decode(kind: CommandKind, frame: str = None):
    frame = frame if frame is not None else RESPONSES[kind]
    return decode_response(kind, validate_response(frame, kind.min_response_length))


class TestStaticDecoders(unittest.TestCase):

    def test_serial_number(self):
        self.assertEqual(decode(CommandKind.SERIAL_NUMBER), {"serialNumber": "K221012345678901"})

    def test_manufacturer_info(self):
        self.assertEqual(decode(CommandKind.MANUFACTURER_INFO), {
            "batteryType": "US2000C",
            "softwareVersion": "V3.2",
            "Manufacturer": "PYLON",
        })

    def test_protocol_version_comes_from_the_version_field(self):
        self.assertEqual(decode(CommandKind.PROTOCOL_VERSION), {"protocolVersion": "V3.5"})

    def test_software_version(self):
        self.assertEqual(decode(CommandKind.SOFTWARE_VERSION), {
            "moduleSoftwareVersion_manufacture": "V1.7",
            "moduleSoftwareVersion_mainline": "V2.10.3",
        })

    def test_system_parameters(self):
        readings = decode(CommandKind.SYSTEM_PARAMETERS)
        self.assertEqual(len(readings), 12)
        self.assertEqual(readings["paramCellHighVoltLimit"], 3.7)
        self.assertEqual(readings["paramCellLowVoltLimit"], 3.0)
        self.assertEqual(readings["paramCellUnderVoltLimit"], 2.7)
        self.assertEqual(readings["paramChargeHighTempLimit"], 60.0)
        self.assertEqual(readings["paramChargeLowTempLimit"], 0.0)
        self.assertEqual(readings["paramChargeCurrentLimit"], 10.0)
        self.assertEqual(readings["paramModuleHighVoltLimit"], 55.0)
        self.assertEqual(readings["paramModuleLowVoltLimit"], 45.0)
        self.assertEqual(readings["paramModuleUnderVoltLimit"], 40.0)
        self.assertEqual(readings["paramDischargeHighTempLimit"], 60.0)
        self.assertEqual(readings["paramDischargeLowTempLimit"], -25.0)
        self.assertEqual(readings["paramDischargeCurrentLimit"], 10.0)


class TestDynamicDecoders(unittest.TestCase):

    def test_alarm_info_ok(self):
        self.assertEqual(decode(CommandKind.ALARM_INFO), {"packCellcount": 15, "packAlarmInfo": "ok"})

    def test_alarm_info_failure(self):
        # a cell voltage state digit at frame offset 20
        info = ALARM_INFO_OK[:7] + "1" + ALARM_INFO_OK[8:]
        readings = decode(CommandKind.ALARM_INFO, response_frame(info))
        self.assertEqual(readings["packAlarmInfo"], "failure")

    def test_alarm_info_ignores_digits_outside_the_alarm_ranges(self):
        # offset 49 holds the temperature count, which is not an alarm
        info = ALARM_INFO_OK[:36] + "5" + ALARM_INFO_OK[37:]
        readings = decode(CommandKind.ALARM_INFO, response_frame(info))
        self.assertEqual(readings["packAlarmInfo"], "ok")

    def test_charge_management_info(self):
        self.assertEqual(decode(CommandKind.CHARGE_MANAGEMENT_INFO), {
            "chargeVoltageLimit": 53.25,
            "dischargeVoltageLimit": 45.0,
            "chargeCurrentLimit": 25.0,
            "dischargeCurrentLimit": 25.0,
            "chargeEnable": "yes",
            "dischargeEnable": "yes",
            "chargeImmediatelySOC05": "no",
            "chargeImmediatelySOC09": "no",
            "chargeFullRequest": "no",
        })

    def test_charge_management_flags(self):
        info = CHARGE_MANAGEMENT_INFO[:-2] + "38"
        readings = decode(CommandKind.CHARGE_MANAGEMENT_INFO, response_frame(info))
        self.assertEqual(readings["chargeEnable"], "no")
        self.assertEqual(readings["dischargeEnable"], "no")
        self.assertEqual(readings["chargeImmediatelySOC05"], "yes")
        self.assertEqual(readings["chargeImmediatelySOC09"], "yes")
        self.assertEqual(readings["chargeFullRequest"], "yes")

    def test_non_hex_field_is_malformed(self):
        info = CHARGE_MANAGEMENT_INFO[:2] + "ZZ02" + CHARGE_MANAGEMENT_INFO[6:]
        with self.assertRaises(MalformedResponseError):
            decode(CommandKind.CHARGE_MANAGEMENT_INFO, response_frame(info))

    def test_analog_value(self):
        readings = decode(CommandKind.ANALOG_VALUE)
        self.assertEqual(readings["packCellcount"], 15)
        self.assertEqual(readings["cellVoltage_01"], 3.3)
        self.assertEqual(readings["cellVoltage_04"], 3.31)
        self.assertEqual(readings["cellVoltage_10"], 3.29)
        self.assertEqual(readings["cellVoltage_15"], 3.3)
        self.assertEqual(readings["bmsTemperature"], 25.0)
        self.assertEqual(readings["cellTemperature_0104"], 24.0)
        self.assertEqual(readings["cellTemperature_1315"], 24.0)
        self.assertEqual(readings["packCurrent"], -2.5)
        self.assertEqual(readings["packVolt"], 49.5)
        self.assertEqual(readings["packCapacityRemain"], 37.0)
        self.assertEqual(readings["packCapacity"], 50.0)
        self.assertEqual(readings["packCycles"], 50)

    def test_analog_value_positive_current(self):
        readings = decode(CommandKind.ANALOG_VALUE, response_frame(analog_info(current="0064")))
        self.assertEqual(readings["packCurrent"], 10.0)

    def test_analog_value_signed_current(self):
        for raw, amps in (("FFFF", -0.1), ("0032", 5.0), ("0000", 0.0)):
            with self.subTest(raw=raw):
                readings = decode(CommandKind.ANALOG_VALUE, response_frame(analog_info(current=raw)))
                self.assertEqual(readings["packCurrent"], amps)

    def test_analog_value_large_capacity_layout(self):
        readings = decode(CommandKind.ANALOG_VALUE, response_frame(ANALOG_VALUE_INFO_LARGE))
        self.assertEqual(readings["packCapacityRemain"], 108.0)
        self.assertEqual(readings["packCapacity"], 120.0)

    def test_analog_value_large_layout_truncated(self):
        # long enough for the command, too short for the 6 digit capacities
        frame = response_frame(ANALOG_VALUE_INFO_LARGE[:-10])
        self.assertGreaterEqual(len(frame), CommandKind.ANALOG_VALUE.min_response_length)
        with self.assertRaises(ResponseTooShortError):
            decode(CommandKind.ANALOG_VALUE, frame)

    def test_analog_value_unknown_layout(self):
        with self.assertRaises(UnsupportedVariantError) as ctx:
            decode(CommandKind.ANALOG_VALUE, response_frame(analog_info("03")))
        self.assertEqual(ctx.exception.value, 3)
        self.assertEqual(str(ctx.exception), "wrong value retrieve analogValue -> user defined items: 3")


class TestDerivedReadings(unittest.TestCase):

    def test_discharging_pack(self):
        derived = compute_derived_readings(decode(CommandKind.ANALOG_VALUE))
        self.assertEqual(derived["averageCellVolt"], 3.3)
        self.assertEqual(derived["packSOC"], 74.0)
        self.assertEqual(derived["packPower"], -123.75)
        self.assertAlmostEqual(derived["packImbalance"], 0.606, places=3)
        self.assertEqual(derived["packState"], "discharging")

    def test_pack_state(self):
        self.assertEqual(compute_derived_readings({"packCurrent": 1.2})["packState"], "charging")
        self.assertEqual(compute_derived_readings({"packCurrent": 0.0})["packState"], "idle")

    def test_missing_inputs_are_skipped(self):
        self.assertEqual(compute_derived_readings({}), {})

    def test_zero_capacity_does_not_divide(self):
        derived = compute_derived_readings({"packCapacity": 0, "packCapacityRemain": 10.0})
        self.assertNotIn("packSOC", derived)

    def test_zero_cell_count_does_not_divide(self):
        derived = compute_derived_readings({"packCellcount": 0, "packVolt": 49.5})
        self.assertNotIn("averageCellVolt", derived)
        self.assertNotIn("packImbalance", derived)


if __name__ == '__main__':
    unittest.main(verbosity=2)
