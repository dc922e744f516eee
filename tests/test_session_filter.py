import os
import sys
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradesim.utils.timeutils import is_in_session, parse_time_str, to_timezone

import unittest


class TestSessionFilter(unittest.TestCase):
    def test_session_window(self) -> None:
        start, end = parse_time_str("06:00"), parse_time_str("20:00")
        inside = pd.Timestamp("2024-01-01 10:00", tz="UTC")
        at_end = pd.Timestamp("2024-01-01 20:00", tz="UTC")
        after = pd.Timestamp("2024-01-01 22:00", tz="UTC")
        self.assertTrue(is_in_session(inside, start, end, "UTC"))
        self.assertFalse(is_in_session(at_end, start, end, "UTC"), "The session end is exclusive")
        self.assertFalse(is_in_session(after, start, end, "UTC"))

    def test_session_in_other_timezone(self) -> None:
        start, end = parse_time_str("08:00"), parse_time_str("17:00")
        # 07:30 UTC is 08:30 in Berlin in winter
        ts = pd.Timestamp("2024-01-15 07:30", tz="UTC")
        self.assertTrue(is_in_session(ts, start, end, "Europe/Berlin"))
        self.assertFalse(is_in_session(ts, start, end, "UTC"))

    def test_overnight_window_wraps(self) -> None:
        start, end = parse_time_str("22:00"), parse_time_str("06:00")
        self.assertTrue(is_in_session(pd.Timestamp("2024-01-01 23:00", tz="UTC"), start, end, "UTC"))
        self.assertTrue(is_in_session(pd.Timestamp("2024-01-02 03:00", tz="UTC"), start, end, "UTC"))
        self.assertFalse(is_in_session(pd.Timestamp("2024-01-02 12:00", tz="UTC"), start, end, "UTC"))

    def test_naive_timestamps_are_utc(self) -> None:
        ts = to_timezone(pd.Timestamp("2024-01-01 12:00"), "Europe/Berlin")
        self.assertEqual(ts.hour, 13)


if __name__ == '__main__':
    unittest.main()
