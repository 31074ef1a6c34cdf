#!/usr/bin/env python3
"""
Tests for the committed reading store.

Usage:
    python test_plugins/test_reading_store.py
"""

import sys
import os
import unittest

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.reading_store import ReadingStore


class FakeClock:
    def __init__(self, now: float = 500.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestReadingStore(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.store = ReadingStore(clock=self.clock)

    def test_commit_returns_snapshot(self):
        snapshot = self.store.commit({"packVolt": 49.5, "state": "connected"})
        self.assertEqual(snapshot, {"packVolt": 49.5, "state": "connected"})
        self.assertEqual(len(self.store), 2)
        self.assertIn("packVolt", self.store)

    def test_commit_merges(self):
        self.store.commit({"packVolt": 49.5, "serialNumber": "K22"})
        self.store.commit({"packVolt": 50.1})
        self.assertEqual(self.store.snapshot(), {"packVolt": 50.1, "serialNumber": "K22"})

    def test_none_values_are_skipped(self):
        self.store.commit({"packVolt": None, "state": "connected"})
        self.assertNotIn("packVolt", self.store)

    def test_keep_only_deletes_other_readings(self):
        self.store.commit({"packVolt": 49.5, "state": "connected", "nextCycletime": "Manual"})
        snapshot = self.store.commit({"state": "Timeout reading data from battery"},
                                     keep_only={"state", "nextCycletime"})
        self.assertEqual(snapshot, {"state": "Timeout reading data from battery", "nextCycletime": "Manual"})

    def test_replace_prefixes_drops_readings_missing_from_the_batch(self):
        self.store.commit({"cellVoltage_01": 3.3, "cellVoltage_02": 3.31, "cellVoltage_03": 3.29, "serialNumber": "K22"})
        self.clock.now += 5
        snapshot = self.store.commit({"cellVoltage_01": 3.28}, replace_prefixes=("cellVoltage_",))
        self.assertEqual(snapshot, {"cellVoltage_01": 3.28, "serialNumber": "K22"})
        self.assertEqual(self.store.age("cellVoltage_02", 601), 601)

    def test_age(self):
        self.store.commit({"serialNumber": "K22"})
        self.clock.now += 42
        self.assertEqual(self.store.age("serialNumber", 601), 42)
        self.assertEqual(self.store.age("packVolt", 601), 601)

    def test_age_is_reset_by_a_new_commit(self):
        self.store.commit({"serialNumber": "K22"})
        self.clock.now += 30
        self.store.commit({"serialNumber": "K22"})
        self.assertEqual(self.store.age("serialNumber", 601), 0)

    def test_age_never_negative(self):
        self.store.commit({"serialNumber": "K22"})
        self.clock.now -= 10
        self.assertEqual(self.store.age("serialNumber", 601), 0.0)

    def test_deleted_reading_has_no_age(self):
        self.store.commit({"serialNumber": "K22", "state": "connected"})
        self.store.delete_except({"state"})
        self.assertEqual(self.store.age("serialNumber", 601), 601)
        self.assertEqual(self.store.snapshot(), {"state": "connected"})

    def test_clear(self):
        self.store.commit({"packVolt": 49.5})
        self.store.clear()
        self.assertEqual(self.store.snapshot(), {})
        self.assertEqual(self.store.get("packVolt", "gone"), "gone")

    def test_snapshot_is_a_copy(self):
        self.store.commit({"packVolt": 49.5})
        snapshot = self.store.snapshot()
        snapshot["packVolt"] = 0
        self.assertEqual(self.store.get("packVolt"), 49.5)


if __name__ == '__main__':
    unittest.main(verbosity=2)
