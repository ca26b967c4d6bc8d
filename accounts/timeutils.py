"""
East African Time helpers.

Every timestamp shown to a user or compared against "now" is normalised
to the project's civil time zone (``settings.TIME_ZONE``, Africa/Nairobi
by default).  Inputs may be aware or naive datetimes, ISO-8601 strings or
epoch seconds; naive values are taken to be UTC, which is what the
database and the auth provider hand out.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

Timestamp = Union[datetime, str, int, float]

OVERDUE_GRACE = timedelta(minutes=15)
OVERDUE_STATUSES = frozenset({"scheduled", "confirmed", "arrived"})


def eat_zone() -> ZoneInfo:
    return ZoneInfo(settings.TIME_ZONE)


def to_eat(value: Timestamp) -> datetime:
    """Return ``value`` as an aware datetime in East African Time."""
    if isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=dt_timezone.utc)
    elif isinstance(value, str):
        dt = parse_datetime(value.strip().replace("Z", "+00:00"))
        if dt is None:
            raise ValueError(f"Unrecognised timestamp: {value!r}")
    else:
        dt = value
    if timezone.is_naive(dt):
        dt = dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(eat_zone())


def now_eat(now: Optional[datetime] = None) -> datetime:
    return to_eat(now or timezone.now())


def format_eat(value: Timestamp) -> str:
    """``MM/DD/YYYY, HH:MM`` on a 24-hour clock."""
    return to_eat(value).strftime("%m/%d/%Y, %H:%M")


def format_eat_display(value: Timestamp) -> str:
    """Human display form, e.g. ``Mar 5, 2025, 02:30 PM``."""
    dt = to_eat(value)
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}, {dt.strftime('%I:%M %p')}"


def format_eat_date_input(value: Timestamp) -> str:
    return to_eat(value).strftime("%Y-%m-%d")


def format_eat_time_input(value: Timestamp) -> str:
    return to_eat(value).strftime("%H:%M")


def expiry_to_eat(expires_at: Optional[float]) -> Optional[str]:
    """ISO form of a session expiry given in epoch seconds."""
    if expires_at is None:
        return None
    return to_eat(expires_at).isoformat()


def overdue_minutes(scheduled: Timestamp, now: Optional[datetime] = None) -> int:
    delta = now_eat(now) - to_eat(scheduled)
    return int(delta.total_seconds() // 60)


def is_appointment_overdue(scheduled: Timestamp, status: str, now: Optional[datetime] = None) -> bool:
    """True once an open appointment is more than 15 minutes past its slot."""
    if status not in OVERDUE_STATUSES:
        return False
    return now_eat(now) > to_eat(scheduled) + OVERDUE_GRACE


def format_overdue(scheduled: Timestamp, now: Optional[datetime] = None) -> str:
    minutes = overdue_minutes(scheduled, now)
    if minutes < 60:
        return f"{minutes}m overdue"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m overdue"
