"""Datetime utilities for common operations."""

from datetime import datetime, date, time, timedelta, timezone
from typing import Optional


def now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(timezone.utc)


def today() -> date:
    """Get current date in UTC."""
    return datetime.now(timezone.utc).date()


def parse_date(date_str: str) -> Optional[date]:
    """
    Parse an ISO calendar date (YYYY-MM-DD).

    Args:
        date_str: Date string to parse

    Returns:
        Parsed date or None if invalid
    """
    try:
        return datetime.strptime(date_str.strip(), "%Y-%m-%d").date()
    except (ValueError, AttributeError):
        return None


def parse_clock_time(time_str: str) -> Optional[time]:
    """
    Parse a wall-clock time in 24h HH:MM format.

    Args:
        time_str: Time string to parse

    Returns:
        Parsed time or None if invalid
    """
    try:
        return datetime.strptime(time_str.strip(), "%H:%M").time()
    except (ValueError, AttributeError):
        return None


def format_clock_time(value: time) -> str:
    """Format a time as HH:MM."""
    return value.strftime("%H:%M")


def combine(day: date, clock: time) -> datetime:
    """Combine a calendar date and a wall-clock time into a naive datetime."""
    return datetime.combine(day, clock)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    """
    Add minutes to a datetime.

    Args:
        dt: Datetime
        minutes: Number of minutes to add (can be negative)

    Returns:
        New datetime
    """
    return dt + timedelta(minutes=minutes)


def days_elapsed(start: datetime, end: datetime) -> float:
    """
    Calculate fractional days between two datetimes.

    Naive values are treated as UTC so that snapshots written without
    timezone information compare cleanly with aware ones.

    Args:
        start: Start datetime
        end: End datetime

    Returns:
        Number of days (fractional, never negative)
    """
    start = ensure_aware(start)
    end = ensure_aware(end)
    return max((end - start).total_seconds(), 0.0) / 86400


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
