# backend/date_utils.py
"""Calendar-day helpers used by analytics, dashboard buckets and quick add."""
import re
from datetime import datetime, date, timedelta, time
from typing import Optional, Union

from .errors import ValidationError
from .validation import parse_datetime

DateLike = Union[datetime, date]

_IN_DAYS = re.compile(r'^in\s+(\d+)\s+days?$')


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def day_key(value: DateLike) -> str:
    """ISO yyyy-mm-dd key for the local calendar day."""
    return _as_date(value).isoformat()


def start_of_day(value: DateLike) -> datetime:
    return datetime.combine(_as_date(value), time.min)


def is_overdue(due: DateLike, now: Optional[datetime] = None) -> bool:
    """Due before the start of today."""
    now = now or datetime.now()
    return _as_date(due) < now.date()


def is_due_today(due: DateLike, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return _as_date(due) == now.date()


def is_due_tomorrow(due: DateLike, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return _as_date(due) == now.date() + timedelta(days=1)


def is_due_this_week(due: DateLike, now: Optional[datetime] = None, first_day_of_week: int = 0) -> bool:
    """
    True when `due` falls in the current week.

    first_day_of_week uses the settings convention: 0 = Sunday, 1 = Monday.
    """
    now = now or datetime.now()
    today = now.date()
    # date.weekday(): Monday=0 .. Sunday=6; shift to Sunday=0 numbering
    offset = (today.weekday() + 1 - first_day_of_week) % 7
    week_start = today - timedelta(days=offset)
    return week_start <= _as_date(due) <= week_start + timedelta(days=6)


def parse_natural_date(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse quick-add date phrases.

    Supports 'today', 'tomorrow', 'next week', 'in N days' and ISO dates
    (a trailing 'Z' or offset is converted to local time).
    Relative phrases keep the current time of day. Returns None when the
    text is not understood.
    """
    if not text:
        return None
    now = now or datetime.now()
    phrase = text.strip().lower()
    if phrase == 'today':
        return now
    if phrase == 'tomorrow':
        return now + timedelta(days=1)
    if phrase == 'next week':
        return now + timedelta(days=7)
    match = _IN_DAYS.match(phrase)
    if match:
        return now + timedelta(days=int(match.group(1)))
    try:
        return parse_datetime(text, 'due date')
    except ValidationError:
        return None
