#!/usr/bin/env python3
"""
Tests for frame encoding, response validation and response reading of the
Pylontech low-voltage protocol.

Usage:
    python test_plugins/test_pylontech_lv_protocol.py
"""

import sys
import os
import time
import unittest

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.battery.pylontech_lv_plugin_constants import CommandKind, MAX_RESPONSE_LENGTH
from plugins.battery.pylontech_lv_protocol import (
    battery_address_to_adr,
    build_request,
    calculate_checksum,
    encode_length_field,
    read_response,
    validate_response,
)
from plugins.battery.pylontech_lv_exceptions import (
    CycleTimeoutError,
    DeviceReportedError,
    InvalidBatteryAddressError,
    MalformedResponseError,
    ReadTimeoutError,
    ResponseTooShortError,
    UnknownResponseDataError,
)
from test_plugins.pylontech_lv_frames import RESPONSES, response_frame


class ByteStream:
    """Returns the given bytes one at a time, then b'' like an expired timeout."""

    def __init__(self, data: bytes):
        self.data = bytearray(data)
        self.reads = 0

    def read(self, size: int = 1) -> bytes:
        self.reads += 1
        chunk = bytes(self.data[:size])
        del self.data[:size]
        return chunk


class TestChecksums(unittest.TestCase):

    def test_checksum_of_first_pack_serial_number_request(self):
        self.assertEqual(calculate_checksum("20024693E00202"), "FD2D")

    def test_checksum_of_second_pack_serial_number_request(self):
        self.assertEqual(calculate_checksum("20034693E00203"), "FD2B")

    def test_checksum_accepts_bytes(self):
        self.assertEqual(calculate_checksum(b"20024693E00202"), "FD2D")

    def test_length_field(self):
        self.assertEqual(encode_length_field("02"), "E002")
        self.assertEqual(encode_length_field(""), "0000")
        self.assertEqual(encode_length_field("0" * 18), "D012")

    def test_length_field_rejects_oversized_info(self):
        with self.assertRaises(ValueError):
            encode_length_field("0" * 0x1000)


class TestBuildRequest(unittest.TestCase):

    def test_serial_number_first_pack(self):
        self.assertEqual(build_request(CommandKind.SERIAL_NUMBER, 1), b"~20024693E00202FD2D\r")

    def test_alarm_info_second_pack(self):
        self.assertEqual(build_request(CommandKind.ALARM_INFO, 2), b"~20034644E00203FD2F\r")

    def test_protocol_version_uses_version_00(self):
        self.assertEqual(build_request(CommandKind.PROTOCOL_VERSION, 1), b"~0002464FE00202FD21\r")

    def test_every_command_frame_is_well_formed(self):
        for kind in CommandKind:
            frame = build_request(kind, 1).decode("ascii")
            with self.subTest(kind=kind):
                self.assertTrue(frame.startswith("~"))
                self.assertTrue(frame.endswith("\r"))
                self.assertEqual(len(frame), 20)
                self.assertEqual(frame[5:9], f"{kind.value.cid1:02X}{kind.value.cid2:02X}")
                self.assertEqual(frame[-5:-1], calculate_checksum(frame[1:-5]))

    def test_address_mapping(self):
        self.assertEqual(battery_address_to_adr(1), 0x02)
        self.assertEqual(battery_address_to_adr(254), 0xFF)

    def test_address_out_of_range(self):
        for address in (0, -1, 255, 1000):
            with self.subTest(address=address):
                with self.assertRaises(InvalidBatteryAddressError):
                    build_request(CommandKind.SERIAL_NUMBER, address)

    def test_address_must_be_an_integer(self):
        for address in ("1", 1.0, True, None):
            with self.subTest(address=address):
                with self.assertRaises(InvalidBatteryAddressError):
                    battery_address_to_adr(address)


class TestValidateResponse(unittest.TestCase):

    def test_valid_frame_is_returned(self):
        frame = RESPONSES[CommandKind.SERIAL_NUMBER]
        self.assertEqual(validate_response(frame, CommandKind.SERIAL_NUMBER.min_response_length), frame)

    def test_bytes_are_accepted(self):
        frame = RESPONSES[CommandKind.ALARM_INFO]
        self.assertEqual(validate_response(frame.encode("ascii"), 82), frame)

    def test_malformed_frames(self):
        for raw in (None, "", "\r", "20024600E00202FD2D\r", "~20024600E002\n", "~20024600e002\r",
                    "~2002 4600\r", "~20024600E002", "~200246\r\n"):
            with self.subTest(raw=raw):
                with self.assertRaises(MalformedResponseError) as ctx:
                    validate_response(raw, 18)
                self.assertEqual(str(ctx.exception), "invalid data received ... discarded")

    def test_non_ascii_bytes_are_malformed(self):
        with self.assertRaises(MalformedResponseError):
            validate_response(b"~2002\xff4600\r", 0)

    def test_too_short(self):
        with self.assertRaises(ResponseTooShortError) as ctx:
            validate_response("~2002\r", 18)
        self.assertEqual(ctx.exception.observed_length, 6)
        self.assertEqual(ctx.exception.min_length, 18)
        self.assertEqual(str(ctx.exception), "insufficient response length 6 of minimum length 18 received ... discarded")

    def test_shape_is_checked_before_length(self):
        with self.assertRaises(MalformedResponseError):
            validate_response("~20\n", 18)

    def test_frame_too_short_for_return_code(self):
        with self.assertRaises(UnknownResponseDataError):
            validate_response("~2002\r", 0)

    def test_device_reported_error(self):
        frame = response_frame("", rtn="02")
        with self.assertRaises(DeviceReportedError) as ctx:
            validate_response(frame, 18)
        self.assertEqual(ctx.exception.return_code, "02")
        self.assertEqual(str(ctx.exception), "CHKSUM error")

    def test_master_slave_communication_error(self):
        with self.assertRaises(DeviceReportedError) as ctx:
            validate_response(response_frame("", rtn="91"), 18)
        self.assertEqual(str(ctx.exception), "Communication error between Master and Slave Pack")

    def test_unknown_return_codes(self):
        # 98 and 99 are generated locally and never sent by a BMS
        for rtn in ("07", "7A", "98", "99", "ZZ"):
            with self.subTest(rtn=rtn):
                with self.assertRaises(UnknownResponseDataError) as ctx:
                    validate_response(response_frame("", rtn=rtn), 18)
                self.assertEqual(ctx.exception.return_code, rtn)
                self.assertEqual(str(ctx.exception), "invalid data received ... discarded")


class TestReadResponse(unittest.TestCase):

    def test_reads_up_to_carriage_return(self):
        stream = ByteStream(b"~20024600E00202FD2D\r~next")
        self.assertEqual(read_response(stream), "~20024600E00202FD2D\r")
        self.assertEqual(bytes(stream.data), b"~next")

    def test_noise_is_dropped(self):
        stream = ByteStream(b"\x00\xff~2002\n4600 E002\x1102FD2D\r")
        self.assertEqual(read_response(stream), "~20024600E00202FD2D\r")

    def test_lowercase_characters_are_dropped(self):
        stream = ByteStream(b"~20x02\r")
        self.assertEqual(read_response(stream), "~2002\r")

    def test_timeout_without_data(self):
        with self.assertRaises(ReadTimeoutError) as ctx:
            read_response(ByteStream(b""))
        self.assertEqual(str(ctx.exception), "Timeout reading data from battery")

    def test_timeout_in_the_middle_of_a_frame(self):
        with self.assertRaises(ReadTimeoutError):
            read_response(ByteStream(b"~200246"))

    def test_expired_deadline(self):
        stream = ByteStream(b"~20024600E00202FD2D\r")
        with self.assertRaises(CycleTimeoutError) as ctx:
            read_response(stream, deadline=time.monotonic() - 1)
        self.assertEqual(str(ctx.exception), "Timeout in communication to RS485 gateway")
        self.assertEqual(stream.reads, 0)

    def test_endless_stream_without_carriage_return(self):
        with self.assertRaises(MalformedResponseError):
            read_response(ByteStream(b"A" * (MAX_RESPONSE_LENGTH + 10)))


if __name__ == '__main__':
    unittest.main(verbosity=2)
