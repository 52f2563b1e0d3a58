"""UTC-everywhere time handling, with calendar dates in the business timezone."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    ONLY use this at boundaries - when rendering for humans or when a
    calendar date in the business's own timezone is needed.

    Args:
        dt: UTC datetime
        tz_name: IANA timezone name (e.g., "Asia/Kolkata")

    Raises:
        ValueError: If datetime is naive or timezone name is invalid
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime. Datetime must be timezone-aware."
        )

    try:
        local_tz = ZoneInfo(tz_name)
    except (KeyError, ZoneInfoNotFoundError):
        raise ValueError(f"Unknown timezone: {tz_name}")

    return dt.astimezone(local_tz)


def today_local(tz_name: str) -> date:
    """
    Today's calendar date in the given timezone.

    Invoice dates are calendar dates: an invoice raised at 01:00 IST on the
    21st is a 21st invoice even though it is still the 20th in UTC.
    """
    return to_local(now_utc(), tz_name).date()
