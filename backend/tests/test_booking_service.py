from datetime import timedelta

import pytest
from sqlmodel import Session

from scholarship_api import errors
from scholarship_api.services import BookingService

from conftest import FIXED_NOW, fixed_clock


def _bookings(session, clock=fixed_clock):
    return BookingService(session, clock=clock)


def test_book_takes_a_seat(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    application = make_student("stu-1", scholarship.scholarship_id)

    booking = _bookings(session).create_booking("stu-1", slot.id, "bring transcript")

    assert booking.booking_status == "booked"
    assert booking.application_id == application.application_id
    assert booking.student_id == "S-stu-1"
    assert booking.student_notes == "bring transcript"
    session.refresh(slot)
    assert slot.current_bookings == 1
    assert not slot.is_bookable


def test_full_slot_is_not_bookable(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    make_student("stu-2", scholarship.scholarship_id)
    _bookings(session).create_booking("stu-1", slot.id)
    with pytest.raises(errors.SlotNotBookable):
        _bookings(session).create_booking("stu-2", slot.id)
    session.refresh(slot)
    assert slot.current_bookings == 1


def test_booking_requires_eligible_application(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id, status="draft")
    with pytest.raises(errors.NoEligibleApplication):
        _bookings(session).create_booking("stu-1", slot.id)
    with pytest.raises(errors.NotFound):
        _bookings(session).create_booking("stu-1", 404)


def test_one_active_booking_per_application(session, scholarship, make_slot, make_student):
    first = make_slot(scholarship.scholarship_id, start="09:00", end="09:30")
    second = make_slot(scholarship.scholarship_id, start="10:00", end="10:30")
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", first.id)
    with pytest.raises(errors.DuplicateBooking):
        _bookings(session).create_booking("stu-1", second.id)
    session.refresh(second)
    assert second.current_bookings == 0

    # a cancelled booking frees the application to book again
    _bookings(session).cancel(booking.id, "clash")
    again = _bookings(session).create_booking("stu-1", second.id)
    assert again.booking_status == "booked"


def test_cancel_releases_seat_once(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id)

    cancelled = _bookings(session).cancel(booking.id, "sick")
    assert cancelled.booking_status == "cancelled"
    assert cancelled.cancellation_reason == "sick"
    assert cancelled.cancelled_at is not None
    session.refresh(slot)
    assert slot.current_bookings == 0

    with pytest.raises(errors.AlreadyCancelled):
        _bookings(session).cancel(booking.id)
    session.refresh(slot)
    assert slot.current_bookings == 0


def test_confirm_checkin_checkout_flow(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id)

    with pytest.raises(errors.CheckInRequired):
        _bookings(session).check_out(booking.id)

    confirmed = _bookings(session).confirm(booking.id)
    assert confirmed.booking_status == "confirmed"
    with pytest.raises(errors.AlreadyConfirmed):
        _bookings(session).confirm(booking.id)

    _bookings(session).check_in(booking.id)
    with pytest.raises(errors.AlreadyCheckedIn):
        _bookings(session).check_in(booking.id)

    later = FIXED_NOW + timedelta(minutes=42, seconds=30)
    done = _bookings(session, clock=lambda: later).check_out(booking.id)
    assert done.booking_status == "completed"
    assert done.actual_duration_minutes == 42

    with pytest.raises(errors.AlreadyCheckedOut):
        _bookings(session).check_out(booking.id)
    with pytest.raises(errors.BookingCompleted):
        _bookings(session).cancel(booking.id)
    # completing keeps the seat counted
    session.refresh(slot)
    assert slot.current_bookings == 1


def test_cancel_fails_when_counter_cannot_be_released(session, scholarship, make_slot, make_student, monkeypatch):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id)

    svc = _bookings(session)
    monkeypatch.setattr(svc.slot_repo, "try_decrement", lambda _slot_id: False)
    with pytest.raises(errors.StorageFailure):
        svc.cancel(booking.id)
    session.refresh(booking)
    assert booking.booking_status == "booked"


def test_update_booking_applies_only_sent_fields(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id, "note")

    updated = _bookings(session).update_booking(booking.id, {"officer_notes": "panel B"})
    assert updated.officer_notes == "panel B"
    assert updated.student_notes == "note"
    assert updated.booking_status == "booked"


def test_mark_reminder_sent(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id)
    assert _bookings(session).mark_reminder_sent(booking.id).reminder_sent_at is not None


def test_students_only_access_their_own_bookings(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    make_student("stu-2", scholarship.scholarship_id)
    svc = _bookings(session)
    booking = svc.create_booking("stu-1", slot.id)

    svc.ensure_access(booking, "stu-1", is_staff=False)
    svc.ensure_access(booking, "officer-1", is_staff=True)
    with pytest.raises(errors.Forbidden):
        svc.ensure_access(booking, "stu-2", is_staff=False)


def test_present_includes_slot_summary(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id, building="Main", room="101")
    make_student("stu-1", scholarship.scholarship_id)
    svc = _bookings(session)
    booking = svc.create_booking("stu-1", slot.id)

    data = svc.present_one(booking)
    assert data["student_name"] == "Stu stu-1"
    assert data["slot"]["location"] == "Main 101"
    assert data["slot"]["scholarship_name"] == "Merit Award"
    assert data["booked_at"].endswith("+00:00")



def test_empty_booking_update_is_rejected(session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking = _bookings(session).create_booking("stu-1", slot.id)
    with pytest.raises(errors.InvalidInput):
        _bookings(session).update_booking(booking.id, {})


def test_confirm_after_concurrent_cancel_reports_cancelled(engine, session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking_id = _bookings(session).create_booking("stu-1", slot.id).id

    with Session(engine) as stale, Session(engine) as other:
        stale_svc = _bookings(stale)
        assert stale_svc.get_booking(booking_id).booking_status == "booked"
        _bookings(other).cancel(booking_id)

        with pytest.raises(errors.AlreadyCancelled):
            stale_svc.confirm(booking_id)
        with pytest.raises(errors.AlreadyCancelled):
            stale_svc.cancel(booking_id)

    session.refresh(slot)
    assert slot.current_bookings == 0


def test_check_in_after_concurrent_check_in_reports_checked_in(engine, session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    make_student("stu-1", scholarship.scholarship_id)
    booking_id = _bookings(session).create_booking("stu-1", slot.id).id

    with Session(engine) as stale, Session(engine) as other:
        stale_svc = _bookings(stale)
        assert stale_svc.get_booking(booking_id).check_in_time is None
        _bookings(other).check_in(booking_id)

        with pytest.raises(errors.AlreadyCheckedIn):
            stale_svc.check_in(booking_id)
