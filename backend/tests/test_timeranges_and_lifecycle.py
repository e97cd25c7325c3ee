from datetime import date, datetime, time, timezone

import pytest

from scholarship_api import errors
from scholarship_api.lifecycle import BookingAction, BookingStatus, next_status
from scholarship_api.utils.timeranges import (
    intervals_overlap,
    minutes_between,
    month_window,
    parse_time,
    today_in,
    validate_time_range,
)


def test_validate_time_range_accepts_today_and_future():
    day, start, end = validate_time_range("2024-01-10", "09:00", "09:30", today=date(2024, 1, 10))
    assert day == date(2024, 1, 10)
    assert (start, end) == (time(9, 0), time(9, 30))


@pytest.mark.parametrize(
    "args, error",
    [
        (("2024-13-01", "09:00", "09:30"), errors.InvalidFormat),
        (("2024-01-10", "9am", "09:30"), errors.InvalidFormat),
        (("2024-01-10", "09:30", "09:30"), errors.InvalidOrder),
        (("2024-01-10", "10:00", "09:00"), errors.InvalidOrder),
        (("2024-01-09", "09:00", "09:30"), errors.PastDate),
    ],
)
def test_validate_time_range_rejects(args, error):
    with pytest.raises(error):
        validate_time_range(*args, today=date(2024, 1, 10))


def test_invalid_format_is_invalid_input():
    with pytest.raises(errors.InvalidInput) as exc:
        parse_time("25:00", "start_time")
    assert exc.value.kind == "invalid_format"
    assert "start_time" in exc.value.message


def test_intervals_overlap_is_half_open():
    assert intervals_overlap(time(9), time(10), time(9, 30), time(10, 30))
    assert intervals_overlap(time(9), time(12), time(10), time(11))
    assert not intervals_overlap(time(9), time(10), time(10), time(11))
    assert not intervals_overlap(time(11), time(12), time(9), time(11))


def test_today_in_uses_schedule_timezone():
    late_utc = datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc)
    assert today_in("UTC", late_utc) == date(2024, 1, 1)
    assert today_in("Asia/Colombo", late_utc) == date(2024, 1, 2)


def test_month_window_clamps_short_months():
    assert month_window(date(2024, 1, 31)) == (date(2024, 1, 31), date(2024, 2, 29))
    assert month_window(date(2024, 3, 31), forward=False) == (date(2024, 2, 29), date(2024, 3, 31))
    assert month_window(date(2023, 12, 15)) == (date(2023, 12, 15), date(2024, 1, 15))


def test_minutes_between_treats_naive_as_utc():
    start = datetime(2024, 1, 10, 9, 0)
    end = datetime(2024, 1, 10, 9, 47, 59, tzinfo=timezone.utc)
    assert minutes_between(start, end) == 47


def test_transitions():
    assert next_status(BookingStatus.BOOKED, BookingAction.CONFIRM) == BookingStatus.CONFIRMED
    assert next_status("confirmed", BookingAction.CANCEL) == BookingStatus.CANCELLED
    assert next_status("confirmed", BookingAction.CHECK_IN) == BookingStatus.CONFIRMED
    assert next_status("booked", BookingAction.CHECK_OUT) == BookingStatus.COMPLETED
    assert next_status("confirmed", BookingAction.RESCHEDULE) == BookingStatus.BOOKED


@pytest.mark.parametrize(
    "status, action, error",
    [
        ("confirmed", BookingAction.CONFIRM, errors.AlreadyConfirmed),
        ("cancelled", BookingAction.CONFIRM, errors.AlreadyCancelled),
        ("cancelled", BookingAction.CANCEL, errors.AlreadyCancelled),
        ("completed", BookingAction.CANCEL, errors.BookingCompleted),
        ("completed", BookingAction.RESCHEDULE, errors.BookingCompleted),
        ("cancelled", BookingAction.CHECK_IN, errors.AlreadyCancelled),
    ],
)
def test_rejected_transitions(status, action, error):
    with pytest.raises(error):
        next_status(status, action)
