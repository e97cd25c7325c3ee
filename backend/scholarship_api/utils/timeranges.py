"""Date and time-range parsing for interview slots.

Dates travel as `YYYY-MM-DD` strings and wall-clock times as `HH:MM`
(24-hour, minute precision). Validation is pure: callers pass in the
calendar day they consider "today".
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from ..errors import InvalidFormat, InvalidOrder, PastDate

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


def parse_date(value: str, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime((value or "").strip(), DATE_FORMAT).date()
    except ValueError:
        raise InvalidFormat(f"{field} must be a date in YYYY-MM-DD format")


def parse_time(value: str, field: str = "time") -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime((value or "").strip(), TIME_FORMAT).time()
    except ValueError:
        raise InvalidFormat(f"{field} must be a time in HH:MM format")


def format_time(value: time) -> str:
    return value.strftime(TIME_FORMAT)


def today_in(tz_name: str, now: Optional[datetime] = None) -> date:
    """Return the calendar day in `tz_name` for `now` (defaults to the current instant)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def validate_time_range(date_str: str, start_str: str, end_str: str, today: date) -> Tuple[date, time, time]:
    """Parse and check an interview window.

    Raises `InvalidFormat` for unparseable values, `InvalidOrder` unless the
    end is strictly after the start and `PastDate` when the date is before
    `today`. Time of day does not matter for the past-date check.
    """
    day = parse_date(date_str, "interview_date")
    start = parse_time(start_str, "start_time")
    end = parse_time(end_str, "end_time")
    if end <= start:
        raise InvalidOrder("end_time must be after start_time")
    if day < today:
        raise PastDate("cannot create interview slots in the past")
    return day, start, end


def intervals_overlap(start1: time, end1: time, start2: time, end2: time) -> bool:
    """Half-open overlap test: [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1."""
    return start1 < end2 and start2 < end1


def minutes_between(earlier: datetime, later: datetime) -> int:
    """Whole minutes elapsed between two instants (naive values are treated as UTC)."""
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    return int((later - earlier) // timedelta(minutes=1))


def month_window(today: date, forward: bool = True) -> Tuple[date, date]:
    """Return a one-month window starting (or ending) at `today`."""
    month = today.month + (1 if forward else -1)
    year = today.year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    # clamp e.g. Jan 31 -> Feb 28
    day = today.day
    while True:
        try:
            other = today.replace(year=year, month=month, day=day)
            break
        except ValueError:
            day -= 1
    return (today, other) if forward else (other, today)
