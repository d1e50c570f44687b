import unittest
from datetime import datetime, timezone

from quote_cache.market_hours import is_market_open, next_market_open, seconds_until_market_open


class TestMarketHours(unittest.TestCase):
    # 2025-01-06 is a Monday; New York is UTC-5 in January.
    def test_open_during_session(self):
        self.assertTrue(is_market_open(datetime(2025, 1, 6, 14, 30, tzinfo=timezone.utc)))
        self.assertTrue(is_market_open(datetime(2025, 1, 6, 20, 59, tzinfo=timezone.utc)))

    def test_closed_outside_session(self):
        self.assertFalse(is_market_open(datetime(2025, 1, 6, 14, 29, tzinfo=timezone.utc)))
        self.assertFalse(is_market_open(datetime(2025, 1, 6, 21, 0, tzinfo=timezone.utc)))

    def test_closed_on_weekend(self):
        self.assertFalse(is_market_open(datetime(2025, 1, 4, 16, 0, tzinfo=timezone.utc)))

    def test_naive_datetime_treated_as_utc(self):
        self.assertTrue(is_market_open(datetime(2025, 1, 6, 15, 0)))

    def test_daylight_saving_offset(self):
        # July: New York is UTC-4, so 13:30 UTC is the open
        self.assertTrue(is_market_open(datetime(2025, 7, 7, 13, 30, tzinfo=timezone.utc)))

    def test_next_open_skips_weekend(self):
        friday_evening = datetime(2025, 1, 10, 22, 0, tzinfo=timezone.utc)
        self.assertEqual(next_market_open(friday_evening), datetime(2025, 1, 13, 14, 30, tzinfo=timezone.utc))

    def test_seconds_until_open(self):
        before_open = datetime(2025, 1, 6, 14, 0, tzinfo=timezone.utc)
        self.assertEqual(seconds_until_market_open(before_open), 1800)


if __name__ == "__main__":
    unittest.main()
