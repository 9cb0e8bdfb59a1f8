#!/usr/bin/env python3
"""
Expiry Sweeper Unit Tests
"""

import unittest
from unittest.mock import Mock
from datetime import datetime, timedelta

from society_parking.application.expiry_sweeper import ExpirySweeper
from society_parking.infrastructure.clock import FixedClock


NOW = datetime(2025, 6, 1, 11, 0)


class TestExpirySweeper(unittest.TestCase):
    """Tests for sweep timing"""

    def setUp(self):
        self.ledger = Mock()
        self.ledger.expire_elapsed.return_value = 2
        self.clock = FixedClock(NOW)
        self.sweeper = ExpirySweeper(self.ledger, self.clock, interval=timedelta(minutes=5))

    def test_sweep_uses_clock(self):
        self.assertEqual(self.sweeper.sweep(), 2)
        self.ledger.expire_elapsed.assert_called_once_with(NOW)
        self.assertEqual(self.sweeper.last_sweep_at, NOW)

    def test_first_tick_is_due(self):
        self.assertTrue(self.sweeper.is_due())
        self.assertEqual(self.sweeper.sweep_if_due(), 2)

    def test_sweep_if_due_respects_interval(self):
        self.sweeper.sweep_if_due()

        self.clock.advance(timedelta(minutes=4))
        self.assertEqual(self.sweeper.sweep_if_due(), 0)
        self.assertEqual(self.ledger.expire_elapsed.call_count, 1)

        self.clock.advance(timedelta(minutes=1))
        self.assertEqual(self.sweeper.sweep_if_due(), 2)
        self.ledger.expire_elapsed.assert_called_with(NOW + timedelta(minutes=5))

    def test_explicit_sweep_resets_interval(self):
        self.sweeper.sweep()
        self.clock.advance(timedelta(minutes=3))
        self.sweeper.sweep()
        self.clock.advance(timedelta(minutes=3))

        self.assertFalse(self.sweeper.is_due())


if __name__ == '__main__':
    unittest.main()
