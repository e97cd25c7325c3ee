import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from scholarship_api import errors, repositories
from scholarship_api.services import BookingService, RescheduleCoordinator

from conftest import fixed_clock


@pytest.fixture
def booked(session, scholarship, make_slot, make_student):
    old = make_slot(scholarship.scholarship_id, start="09:00", end="09:30")
    new = make_slot(scholarship.scholarship_id, start="11:00", end="11:30")
    make_student("stu-1", scholarship.scholarship_id)
    svc = BookingService(session, clock=fixed_clock)
    booking = svc.create_booking("stu-1", old.id)
    svc.confirm(booking.id)
    return booking, old, new


def test_reschedule_moves_booking_and_counters(session, booked):
    booking, old, new = booked
    moved = RescheduleCoordinator(session, clock=fixed_clock).reschedule(booking.id, new.id, "interviewer ill")

    assert moved.slot_id == new.id
    assert moved.rescheduled_from_slot_id == old.id
    assert moved.rescheduled_to_slot_id == new.id
    assert moved.booking_status == "booked"
    assert moved.confirmed_at is None
    assert "interviewer ill" in moved.officer_notes
    session.refresh(old)
    session.refresh(new)
    assert (old.current_bookings, new.current_bookings) == (0, 1)


def test_reschedule_rejects_same_or_full_slot(session, booked, make_slot, make_student, scholarship):
    booking, old, new = booked
    coordinator = RescheduleCoordinator(session, clock=fixed_clock)
    with pytest.raises(errors.InvalidInput):
        coordinator.reschedule(booking.id, old.id)
    with pytest.raises(errors.NotFound):
        coordinator.reschedule(booking.id, 9999)

    make_student("stu-2", scholarship.scholarship_id)
    BookingService(session, clock=fixed_clock).create_booking("stu-2", new.id)
    with pytest.raises(errors.SlotNotBookable):
        coordinator.reschedule(booking.id, new.id)


def _assert_untouched(session, booking, old, new):
    session.refresh(booking)
    session.refresh(old)
    session.refresh(new)
    assert booking.slot_id == old.id
    assert booking.booking_status == "confirmed"
    assert booking.rescheduled_to_slot_id is None
    assert (old.current_bookings, new.current_bookings) == (1, 0)


def test_reschedule_rolls_back_when_new_seat_is_taken_meanwhile(session, booked, monkeypatch):
    booking, old, new = booked
    monkeypatch.setattr(repositories.SlotRepository, "try_increment", lambda self, slot_id: False)
    with pytest.raises(errors.SlotNotBookable):
        RescheduleCoordinator(session, clock=fixed_clock).reschedule(booking.id, new.id)
    _assert_untouched(session, booking, old, new)


def test_reschedule_rolls_back_on_storage_error(session, booked, monkeypatch):
    booking, old, new = booked

    def broken(self, slot_id):
        raise OperationalError("UPDATE interviewslot", {}, Exception("disk I/O error"))

    monkeypatch.setattr(repositories.SlotRepository, "try_increment", broken)
    with pytest.raises(errors.StorageFailure):
        RescheduleCoordinator(session, clock=fixed_clock).reschedule(booking.id, new.id)
    _assert_untouched(session, booking, old, new)


def test_cancelled_booking_cannot_be_rescheduled(session, booked):
    booking, old, new = booked
    BookingService(session, clock=fixed_clock).cancel(booking.id)
    with pytest.raises(errors.AlreadyCancelled):
        RescheduleCoordinator(session, clock=fixed_clock).reschedule(booking.id, new.id)


def test_concurrent_bookings_never_overfill_a_slot(engine, session, scholarship, make_slot, make_student):
    slot = make_slot(scholarship.scholarship_id)
    users = ["stu-1", "stu-2", "stu-3", "stu-4"]
    for user in users:
        make_student(user, scholarship.scholarship_id)

    barrier = threading.Barrier(len(users))
    outcomes = {}

    def attempt(user_id):
        with Session(engine) as own_session:
            barrier.wait()
            try:
                BookingService(own_session, clock=fixed_clock).create_booking(user_id, slot.id)
                outcomes[user_id] = "booked"
            except errors.SchedulingError as exc:
                outcomes[user_id] = exc.kind

    threads = [threading.Thread(target=attempt, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes.values()) == ["booked", "slot_not_bookable", "slot_not_bookable", "slot_not_bookable"]
    session.refresh(slot)
    assert slot.current_bookings == 1


def test_reschedule_after_concurrent_cancel_reports_cancelled(engine, session, booked):
    booking, old, new = booked
    coordinator = RescheduleCoordinator(session, clock=fixed_clock)
    write_booking = coordinator.booking_repo.update_if

    def cancel_elsewhere_first(*args, **kwargs):
        with Session(engine) as other:
            BookingService(other, clock=fixed_clock).cancel(booking.id)
        return write_booking(*args, **kwargs)

    coordinator.booking_repo.update_if = cancel_elsewhere_first
    with pytest.raises(errors.AlreadyCancelled):
        coordinator.reschedule(booking.id, new.id)

    session.refresh(old)
    session.refresh(new)
    assert (old.current_bookings, new.current_bookings) == (0, 0)


def test_concurrent_reschedules_into_last_seat(engine, session, scholarship, make_slot, make_student):
    users = ["stu-1", "stu-2", "stu-3"]
    target = make_slot(scholarship.scholarship_id, start="12:00", end="12:30")
    booking_ids = {}
    for hour, user in zip((9, 10, 11), users):
        origin = make_slot(scholarship.scholarship_id, start=f"{hour:02d}:00", end=f"{hour:02d}:30")
        make_student(user, scholarship.scholarship_id)
        booking_ids[user] = BookingService(session, clock=fixed_clock).create_booking(user, origin.id).id

    barrier = threading.Barrier(len(users))
    outcomes = {}

    def attempt(user_id):
        with Session(engine) as own_session:
            barrier.wait()
            try:
                RescheduleCoordinator(own_session, clock=fixed_clock).reschedule(booking_ids[user_id], target.id)
                outcomes[user_id] = "ok"
            except errors.SchedulingError as exc:
                outcomes[user_id] = exc.kind

    threads = [threading.Thread(target=attempt, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes.values()) == ["ok", "slot_not_bookable", "slot_not_bookable"]
    session.refresh(target)
    assert target.current_bookings == 1
    booking_service = BookingService(session, clock=fixed_clock)
    on_target = [u for u in users if booking_service.get_booking(booking_ids[u]).slot_id == target.id]
    assert on_target == [u for u, kind in outcomes.items() if kind == "ok"]
