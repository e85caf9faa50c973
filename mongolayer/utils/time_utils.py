#!/usr/bin/env python3
"""
Shared datetime utilities for consistent time handling.

Every datetime handed to the database is an aware datetime in UTC, so stored
queries compare instants rather than wall-clock values.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """
    Get the current time as an aware UTC datetime.

    Returns:
        datetime with tzinfo=timezone.utc
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to an aware UTC datetime.

    Args:
        dt: Naive datetimes are assumed to already be in UTC;
            aware datetimes are converted.

    Returns:
        Aware UTC datetime
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_dates(value: Any) -> Any:
    """
    Return a copy of value with every datetime converted to UTC.

    Walks dicts, lists and tuples; any other value is returned unchanged.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, dict):
        return {key: normalize_dates(item) for key, item in value.items()}
    if isinstance(value, list):
        return [normalize_dates(item) for item in value]
    if isinstance(value, tuple):
        return tuple(normalize_dates(item) for item in value)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from common input shapes.

    Accepts datetimes, ISO-8601 strings (a trailing "Z" means UTC) and Unix
    timestamps in seconds. Empty values give None.

    Raises:
        ValueError: If a string is not ISO-8601
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))
