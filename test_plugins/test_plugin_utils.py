#!/usr/bin/env python3
"""
Tests for the plugin helper functions.

Usage:
    python test_plugins/test_plugin_utils.py
"""

import sys
import os
import unittest

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from plugins.plugin_utils import hexdump
from plugins.plugin_interface import parse_config_bool, parse_config_float, parse_config_int, parse_config_str


class TestHexdump(unittest.TestCase):

    def test_request_frame(self):
        lines = hexdump(b"~20024693E00202FD2D\r").splitlines()
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0], "0x00000000 (00000)  7e323030 32343639 33453030 32303246  ~20024693E00202F")
        self.assertEqual(lines[1], "0x00000010 (00016)  4432440d                             D2D.")

    def test_string_input(self):
        self.assertEqual(hexdump("~\r"), "0x00000000 (00000)  7e0d                                 ~.")

    def test_empty_input(self):
        self.assertEqual(hexdump(b""), "")


class TestConfigParsing(unittest.TestCase):

    def test_int_with_comment(self):
        self.assertEqual(parse_config_int({"pylon_tcp_port": "8888 ; gateway"}, "pylon_tcp_port", 502), 8888)

    def test_float_default(self):
        self.assertEqual(parse_config_float({}, "timeout", 0.5), 0.5)

    def test_str_empty_is_none(self):
        self.assertIsNone(parse_config_str({"pylon_tcp_host": " ; not set"}, "pylon_tcp_host"))

    def test_bool(self):
        self.assertTrue(parse_config_bool({"disable": "Yes"}, "disable"))
        self.assertTrue(parse_config_bool({"disable": True}, "disable"))
        self.assertFalse(parse_config_bool({"disable": "false"}, "disable"))
        self.assertFalse(parse_config_bool({}, "disable"))
        self.assertTrue(parse_config_bool({"disable": ""}, "disable", True))


if __name__ == '__main__':
    unittest.main(verbosity=2)
