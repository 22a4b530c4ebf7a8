"""Delivery-time arithmetic for user notification preferences.

All inputs and outputs are naive UTC datetimes; quiet hours and digest slots
are interpreted in the user's own timezone.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from src.config import get_settings
from src.models.notification_preferences import EmailFrequency, NotificationPreferences


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def to_local(now: datetime, tz: ZoneInfo) -> datetime:
    return now.replace(tzinfo=timezone.utc).astimezone(tz)


def to_utc(local: datetime) -> datetime:
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def is_time_in_range(current: time, start: time, end: time) -> bool:
    """``[start, end)``; ranges such as 22:00-06:00 wrap past midnight."""
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def is_in_quiet_hours(
    now: datetime, start: Optional[time], end: Optional[time], timezone_name: Optional[str]
) -> bool:
    if start is None or end is None:
        return False
    local = to_local(now, get_zone(timezone_name))
    return is_time_in_range(local.time().replace(second=0, microsecond=0), start, end)


def quiet_hours_end(now: datetime, end: time, timezone_name: Optional[str]) -> datetime:
    """Next local occurrence of ``end`` after ``now``, as naive UTC."""
    local = to_local(now, get_zone(timezone_name))
    candidate = local.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if candidate <= local:
        candidate += timedelta(days=1)
    return to_utc(candidate)


def next_digest_slot(now: datetime, frequency: EmailFrequency, timezone_name: Optional[str]) -> datetime:
    if frequency == EmailFrequency.instant:
        return now
    if frequency == EmailFrequency.hourly:
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    digest_hour = get_settings().digest_hour
    local = to_local(now, get_zone(timezone_name))
    slot = local.replace(hour=digest_hour, minute=0, second=0, microsecond=0)
    if frequency == EmailFrequency.daily:
        if slot <= local:
            slot += timedelta(days=1)
        return to_utc(slot)

    # weekly: Monday morning
    slot += timedelta(days=(7 - local.weekday()) % 7)
    if slot <= local:
        slot += timedelta(days=7)
    return to_utc(slot)


def calculate_scheduled_time(now: datetime, preferences: NotificationPreferences) -> datetime:
    """When an alert email for this user should go out."""
    scheduled = next_digest_slot(now, preferences.email_frequency, preferences.timezone)
    if is_in_quiet_hours(
        scheduled, preferences.quiet_hours_start, preferences.quiet_hours_end, preferences.timezone
    ):
        scheduled = quiet_hours_end(scheduled, preferences.quiet_hours_end, preferences.timezone)
    return scheduled


def format_quiet_hours(start: Optional[time], end: Optional[time]) -> str:
    if start is None or end is None:
        return "Not set"
    return f"{start.strftime('%I:%M %p')} - {end.strftime('%I:%M %p')}"
