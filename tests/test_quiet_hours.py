from datetime import datetime, time

import pytest

from src.models.notification_preferences import EmailFrequency, NotificationPreferences
from src.notifications.quiet_hours import (
    calculate_scheduled_time,
    format_quiet_hours,
    is_in_quiet_hours,
    is_time_in_range,
    next_digest_slot,
    quiet_hours_end,
)

# Tuesday
NOW = datetime(2026, 3, 10, 12, 20)


class TestTimeRange:
    @pytest.mark.parametrize(
        "current,expected",
        [(time(23, 0), True), (time(2, 0), True), (time(6, 59), True), (time(7, 0), False), (time(12, 0), False)],
    )
    def test_range_crossing_midnight(self, current, expected):
        assert is_time_in_range(current, time(22, 0), time(7, 0)) is expected

    def test_same_day_range(self):
        assert is_time_in_range(time(13, 0), time(12, 0), time(14, 0))
        assert not is_time_in_range(time(14, 0), time(12, 0), time(14, 0))

    def test_empty_range(self):
        assert not is_time_in_range(time(12, 0), time(12, 0), time(12, 0))


class TestQuietHours:
    def test_not_configured(self):
        assert not is_in_quiet_hours(NOW, None, time(7, 0), "UTC")

    def test_uses_user_timezone(self):
        # 03:30 UTC is 23:30 in New York (EDT)
        now = datetime(2026, 3, 10, 3, 30)
        assert is_in_quiet_hours(now, time(22, 0), time(7, 0), "America/New_York")
        assert not is_in_quiet_hours(now, time(22, 0), time(7, 0), "Asia/Tokyo")

    def test_end_is_next_local_occurrence(self):
        now = datetime(2026, 3, 10, 3, 30)
        assert quiet_hours_end(now, time(7, 0), "America/New_York") == datetime(2026, 3, 10, 11, 0)

    def test_end_rolls_to_tomorrow(self):
        now = datetime(2026, 3, 10, 23, 0)
        assert quiet_hours_end(now, time(7, 0), "UTC") == datetime(2026, 3, 11, 7, 0)

    def test_unknown_timezone_falls_back_to_utc(self):
        now = datetime(2026, 3, 10, 23, 0)
        assert is_in_quiet_hours(now, time(22, 0), time(7, 0), "Mars/Olympus_Mons")

    def test_format(self):
        assert format_quiet_hours(time(22, 0), time(7, 0)) == "10:00 PM - 07:00 AM"
        assert format_quiet_hours(None, None) == "Not set"


class TestDigestSlots:
    def test_instant(self):
        assert next_digest_slot(NOW, EmailFrequency.instant, "UTC") == NOW

    def test_hourly(self):
        assert next_digest_slot(NOW, EmailFrequency.hourly, "UTC") == datetime(2026, 3, 10, 13, 0)

    def test_daily(self):
        assert next_digest_slot(NOW, EmailFrequency.daily, "UTC") == datetime(2026, 3, 11, 9, 0)

    def test_daily_before_digest_hour(self):
        morning = datetime(2026, 3, 10, 6, 0)
        assert next_digest_slot(morning, EmailFrequency.daily, "UTC") == datetime(2026, 3, 10, 9, 0)

    def test_weekly(self):
        assert next_digest_slot(NOW, EmailFrequency.weekly, "UTC") == datetime(2026, 3, 16, 9, 0)


class TestCalculateScheduledTime:
    def test_defaults_send_now(self):
        assert calculate_scheduled_time(NOW, NotificationPreferences.defaults(1)) == NOW

    def test_pushed_past_quiet_hours(self):
        prefs = NotificationPreferences.defaults(1)
        prefs.quiet_hours_start = time(12, 0)
        prefs.quiet_hours_end = time(14, 0)
        assert calculate_scheduled_time(NOW, prefs) == datetime(2026, 3, 10, 14, 0)
