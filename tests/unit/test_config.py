#!/usr/bin/env python3
"""
Configuration Unit Tests
"""

import unittest

from pydantic import ValidationError

from society_parking.config import ParkingConfig


class TestParkingConfig(unittest.TestCase):
    """Tests for ParkingConfig defaults, validation and environment loading"""

    def test_defaults(self):
        config = ParkingConfig()
        self.assertEqual(config.resident_slot_count, 50)
        self.assertEqual(config.visitor_slot_count, 20)
        self.assertEqual(config.max_booking_attempts, 3)
        self.assertEqual(config.sweep_interval_minutes, 5)
        self.assertEqual(config.store_backend, "in_memory")
        self.assertIsNone(config.redis_url)

    def test_from_env(self):
        environ = {
            "SOCIETY_PARKING_VISITOR_SLOT_COUNT": "8",
            "SOCIETY_PARKING_STORE_BACKEND": "mongo",
            "SOCIETY_PARKING_MONGO_URL": "mongodb://db:27017",
            "SOCIETY_PARKING_REDIS_URL": "",
            "SOCIETY_PARKING_LOG_LEVEL": "debug",
            "UNRELATED": "x",
        }
        config = ParkingConfig.from_env(environ)

        self.assertEqual(config.visitor_slot_count, 8)
        self.assertEqual(config.store_backend, "mongo")
        self.assertEqual(config.mongo_url, "mongodb://db:27017")
        self.assertIsNone(config.redis_url)
        self.assertEqual(config.log_level, "DEBUG")

    def test_overrides_win_over_environment(self):
        config = ParkingConfig.from_env({"SOCIETY_PARKING_RESIDENT_SLOT_COUNT": "10"}, resident_slot_count=4)
        self.assertEqual(config.resident_slot_count, 4)

    def test_invalid_values(self):
        for values in [
            {"visitor_slot_count": -1},
            {"max_booking_attempts": 0},
            {"sweep_interval_minutes": 0},
            {"store_backend": "sqlite"},
            {"log_level": "LOUD"},
            {"store_backend": "mongo", "mongo_url": ""},
            {"unknown_setting": 1},
        ]:
            with self.subTest(values=values):
                with self.assertRaises(ValidationError):
                    ParkingConfig(**values)

    def test_config_is_frozen(self):
        config = ParkingConfig()
        with self.assertRaises(ValidationError):
            config.visitor_slot_count = 5


if __name__ == '__main__':
    unittest.main()
