"""Utility functions for Puros.

Helpers for datetime handling, calendar arithmetic for the feed date filter,
and small data-transformation chores.
"""

import uuid
from datetime import UTC, date, datetime, timedelta
from typing import Any

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]
from dateutil.relativedelta import relativedelta  # type: ignore[import-untyped]


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None if input is None

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00Z")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def parse_date(value: str | date | datetime | None) -> date | None:
    """Parse a calendar date from an ISO string, date or datetime.

    Example:
        >>> parse_date("2024-06-01")
        datetime.date(2024, 6, 1)
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return dateutil_parser.isoparse(value).date()


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_today() -> date:
    """Get the current calendar date in UTC."""
    return utc_now().date()


def shift_back(today: date, *, days: int = 0, months: int = 0, years: int = 0) -> date:
    """Move a calendar date back by a number of days, months and years.

    Month and year arithmetic clamps to the last valid day of the target
    month, so March 31st minus one month is February 28th (or 29th).

    Example:
        >>> shift_back(date(2024, 3, 31), months=1)
        datetime.date(2024, 2, 29)
    """
    return today - relativedelta(years=years, months=months) - timedelta(days=days)


def new_id() -> str:
    """Generate a new random entity identifier."""
    return str(uuid.uuid4())


def redact_token(token: str | None) -> str:
    """Redact sensitive tokens for safe logging.

    Example:
        >>> redact_token("abcdefghijklmnop")
        'abcdefgh...mnop'
        >>> redact_token("short")
        '***'
    """
    if not token:
        return "None"
    return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


def chunk_list(items: list[Any], chunk_size: int) -> list[list[Any]]:
    """Split list into chunks of specified size.

    Example:
        >>> chunk_list([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally.

    Example:
        >>> escape_like("50%_off")
        '50\\\\%\\\\_off'
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
