import unittest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from dailydraw.config import Settings
from dailydraw.draw.day_bucket import (
    bucket_for_settings,
    compute_bucket,
    local_wall_clock,
    wall_clock_to_utc,
)

MADRID = ZoneInfo("Europe/Madrid")
UTC = timezone.utc


class ComputeBucketTestCase(unittest.TestCase):
    def test_just_before_cutover_belongs_to_today(self):
        # 21:59 CEST
        bucket = compute_bucket(datetime(2025, 6, 10, 19, 59, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 6, 10, 20, 0, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 6, 10, tzinfo=UTC))

    def test_after_cutover_rolls_to_tomorrow(self):
        # 22:00:01 CEST
        bucket = compute_bucket(datetime(2025, 6, 10, 20, 0, 1, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 6, 11, 20, 0, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 6, 11, tzinfo=UTC))

    def test_exactly_at_cutover_rolls_to_tomorrow(self):
        bucket = compute_bucket(datetime(2025, 6, 10, 20, 0, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.day, datetime(2025, 6, 11).date())

    def test_winter_offset(self):
        # CET is UTC+1, so the 22:00 cutover is 21:00Z.
        bucket = compute_bucket(datetime(2025, 1, 15, 9, 0, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 1, 15, 21, 0, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 1, 15, tzinfo=UTC))

    def test_local_date_differs_from_utc_date(self):
        # 00:30 CEST on June 11 is still June 10 in UTC.
        bucket = compute_bucket(datetime(2025, 6, 10, 22, 30, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.day_bucket, datetime(2025, 6, 11, tzinfo=UTC))
        self.assertEqual(bucket.closes_at, datetime(2025, 6, 11, 20, 0, tzinfo=UTC))

    def test_naive_input_is_treated_as_utc(self):
        aware = compute_bucket(datetime(2025, 6, 10, 12, 0, tzinfo=UTC), MADRID)
        naive = compute_bucket(datetime(2025, 6, 10, 12, 0), MADRID)
        self.assertEqual(aware, naive)

    def test_closes_at_is_always_in_the_future_and_within_a_day(self):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        for hours in range(0, 24 * 400, 7):
            now = start + timedelta(hours=hours, minutes=13)
            bucket = compute_bucket(now, MADRID)
            self.assertGreater(bucket.closes_at, now)
            self.assertLessEqual(bucket.closes_at - now, timedelta(hours=25))
            self.assertEqual(local_wall_clock(bucket.closes_at, MADRID).hour, 22)
            self.assertEqual(bucket.day_bucket.time(), datetime.min.time())

    def test_custom_cutover_and_settings(self):
        settings = Settings(timezone_name="America/New_York", cutover_hour=18, cutover_minute=30)
        bucket = bucket_for_settings(datetime(2025, 6, 10, 12, 0, tzinfo=UTC), settings)
        # EDT is UTC-4
        self.assertEqual(bucket.closes_at, datetime(2025, 6, 10, 22, 30, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 6, 10, tzinfo=UTC))


class DaylightSavingTestCase(unittest.TestCase):
    def test_spring_forward_day(self):
        # Clocks jump 02:00 -> 03:00 CET->CEST on 2025-03-30; 22:00 that evening is CEST.
        bucket = compute_bucket(datetime(2025, 3, 30, 8, 0, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 3, 30, 20, 0, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 3, 30, tzinfo=UTC))

    def test_fall_back_day(self):
        # Clocks return 03:00 -> 02:00 on 2025-10-26; 22:00 that evening is CET.
        bucket = compute_bucket(datetime(2025, 10, 26, 8, 0, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 10, 26, 21, 0, tzinfo=UTC))
        self.assertEqual(bucket.day_bucket, datetime(2025, 10, 26, tzinfo=UTC))

    def test_previous_evening_crosses_into_dst_day(self):
        # 23:00 CET on 2025-03-29 targets the cutover of the DST-change day.
        bucket = compute_bucket(datetime(2025, 3, 29, 22, 0, tzinfo=UTC), MADRID)
        self.assertEqual(bucket.closes_at, datetime(2025, 3, 30, 20, 0, tzinfo=UTC))

    def test_wall_clock_in_gap_stays_close(self):
        # 02:30 does not exist on 2025-03-30 in Madrid.
        local = datetime(2025, 3, 30, 2, 30)
        result = wall_clock_to_utc(local, MADRID)
        self.assertLessEqual(
            abs(local_wall_clock(result, MADRID) - local), timedelta(hours=1)
        )

    def test_wall_clock_round_trip_outside_transitions(self):
        local = datetime(2025, 7, 1, 22, 0)
        result = wall_clock_to_utc(local, MADRID)
        self.assertEqual(result, datetime(2025, 7, 1, 20, 0, tzinfo=UTC))
        self.assertEqual(local_wall_clock(result, MADRID), local)

    def test_wall_clock_rejects_aware_input(self):
        with self.assertRaises(ValueError):
            wall_clock_to_utc(datetime(2025, 7, 1, 22, 0, tzinfo=UTC), MADRID)


if __name__ == "__main__":
    unittest.main()
