"""
Utility functions for the application.
"""
from typing import Any, Dict
from datetime import datetime, time, timedelta, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def start_of_day(value: datetime) -> datetime:
    """Midnight of the given day."""
    return datetime.combine(value.date(), time.min)


def end_of_day(value: datetime) -> datetime:
    """Last millisecond of the given day (23:59:59.999)."""
    return datetime.combine(value.date(), time(23, 59, 59, 999000))


def days_between(start: datetime, end: datetime) -> float:
    """Fractional number of days from start to end."""
    return (end - start) / timedelta(days=1)


def format_error(message: str, details: Any = None) -> Dict[str, Any]:
    """Format error response."""
    response = {"error": message}
    if details:
        response["details"] = details
    return response
