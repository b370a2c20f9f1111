"""
Timezone helpers.

Timestamps are stored as naive UTC. Generated documents show local time in the
configured display timezone (default Europe/London).
"""

from datetime import datetime, timezone
from typing import Optional, Union

import pytz
from flask import current_app, has_app_context

DEFAULT_DISPLAY_TIMEZONE = "Europe/London"


def get_display_timezone() -> str:
    if has_app_context():
        return current_app.config.get('DISPLAY_TIMEZONE', DEFAULT_DISPLAY_TIMEZONE)
    return DEFAULT_DISPLAY_TIMEZONE


def utc_now() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def db_now() -> datetime:
    """Current UTC time as stored in DateTime columns (naive)."""
    return utc_now().replace(tzinfo=None)


def to_db_datetime(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Normalise an aware/naive datetime or ISO string to naive UTC for storage."""
    if value is None or value == '':
        return None
    if isinstance(value, str):
        value = parse_datetime_string(value)
    elif value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def parse_datetime_string(dt_string: str) -> Optional[datetime]:
    """
    Parse an ISO 8601 string (``Z`` suffix allowed) into an aware UTC datetime.

    Naive values are taken to be in the display timezone, which is what the
    mobile app sends when the device omits an offset.

    Raises:
        ValueError: If the string cannot be parsed
    """
    if not dt_string:
        return None
    dt = datetime.fromisoformat(dt_string.strip().replace('Z', '+00:00'))
    if dt.tzinfo is None:
        display_tz = pytz.timezone(get_display_timezone())
        dt = display_tz.localize(dt)
    return dt.astimezone(timezone.utc)


def format_datetime_for_display(utc_dt: Optional[datetime], fmt: str = "%d/%m/%Y %H:%M") -> str:
    if utc_dt is None:
        return ""
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)
    display_tz = pytz.timezone(get_display_timezone())
    return utc_dt.astimezone(display_tz).strftime(fmt)


def format_datetime_for_api(utc_dt: Optional[datetime]) -> Optional[str]:
    if utc_dt is None:
        return None
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)
    else:
        utc_dt = utc_dt.astimezone(timezone.utc)
    return utc_dt.isoformat().replace('+00:00', 'Z')
