"""Calendar-month arithmetic on billing dates."""

import calendar
from datetime import date

from dateutil.relativedelta import relativedelta


def add_months(d: date, months: int) -> date:
    """Shift a date by whole months, clamping to the target month's last day."""
    return d + relativedelta(months=months)


def months_between(start: date, end: date) -> int:
    """Calendar months from start's month to end's month, ignoring the day."""
    delta = relativedelta(end.replace(day=1), start.replace(day=1))
    return delta.years * 12 + delta.months


def is_last_day_of_month(d: date) -> bool:
    return d.day == calendar.monthrange(d.year, d.month)[1]
