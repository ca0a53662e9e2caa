"""Date helpers shared by sync jobs, the webhook receiver and the dashboard.

All datetimes stored in the database are naive UTC, matching the
`DateTime` columns in models.py.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

DATE_FORMAT = "%Y-%m-%d"

# Formats GoHighLevel uses for appointment start times in workflow payloads
HUMAN_DATETIME_FORMATS = (
    "%B %d, %Y %I:%M %p",
    "%B %d, %Y %I:%M:%S %p",
    "%b %d, %Y %I:%M %p",
    "%m/%d/%Y %I:%M %p",
    "%Y-%m-%d %H:%M:%S",
)

_WEEKDAY_PREFIX = re.compile(
    r"^(monday|tuesday|wednesday|thursday|friday|saturday|sunday|mon|tue|wed|thu|fri|sat|sun),?\s+",
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Naive UTC now, the representation used by every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD string.

    Raises:
        ValueError: If the value is not a valid calendar date in that format
    """
    if not isinstance(value, str) or not _ISO_DATE.match(value.strip()):
        raise ValueError(f"Invalid date format: {value!r}. Use YYYY-MM-DD")
    return datetime.strptime(value.strip(), DATE_FORMAT).date()


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def default_sync_window(today: Optional[date] = None) -> Tuple[date, date]:
    """Default ad sync window: the last seven days up to and including today."""
    today = today or utcnow().date()
    return today - timedelta(days=7), today


def day_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """Inclusive UTC bounds covering every instant of the start and end days."""
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


def previous_period(start: date, end: date) -> Tuple[date, date]:
    """Return the window of equal length that ends the day before `start`.

    Example:
        previous_period(date(2024, 1, 8), date(2024, 1, 14))
        -> (date(2024, 1, 1), date(2024, 1, 7))
    """
    length = (end - start).days + 1
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=length - 1)
    return prev_start, prev_end


def parse_flexible_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 or human-readable datetime into naive UTC.

    WHAT:
        Accepts ISO strings (with or without a trailing Z) and the
        human-readable forms CRM workflows send, e.g.
        "Saturday, January 31, 2026 2:00 PM". A leading weekday is ignored.

    WHY:
        Appointment times arrive in whatever format the workflow author
        configured. Values without a timezone are treated as UTC.

    Returns:
        Naive UTC datetime, or None when the value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)

    text = str(value).strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return to_naive_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    text = _WEEKDAY_PREFIX.sub("", text)
    for fmt in HUMAN_DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None
