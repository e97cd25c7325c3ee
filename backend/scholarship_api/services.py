"""Business logic services used by HTTP controllers.

This module holds the service classes of the interview scheduling core.
Services validate input, apply the booking state machine and persist
changes through repositories. Each mutating operation runs inside
`unit_of_work`, which commits on success and rolls back on any error, so
a booking and the occupancy counters it touches always change together.

Validation and business-rule errors are raised before anything is
written. Database errors inside a unit of work surface as
`StorageFailure`.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import (
    AlreadyCheckedIn,
    AlreadyCheckedOut,
    CannotDisableBookedSlot,
    CapacityBelowBookings,
    CheckInRequired,
    DuplicateBooking,
    Forbidden,
    InvalidInput,
    NoEligibleApplication,
    NotFound,
    SchedulingError,
    SlotConflict,
    SlotHasBookings,
    SlotNotBookable,
    StorageFailure,
)
from .lifecycle import BookingAction, BookingStatus, next_status
from .schemas import Page, SlotCreateIn
from .utils.observability import record_event
from .utils.timeranges import (
    format_time,
    intervals_overlap,
    minutes_between,
    month_window,
    parse_date,
    today_in,
    validate_time_range,
)

logger = logging.getLogger("scholarship_api.services")

Clock = Callable[[], datetime]

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DURATION_RANGE = (15, 180)
PREPARATION_RANGE = (0, 60)


def _iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with offset; SQLite hands timestamps back naive, they are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def display_name(user: Optional[models.User], fallback: str = "") -> str:
    if user is None:
        return fallback
    name = f"{user.first_name or ''} {user.last_name or ''}".strip()
    return name or user.email or user.user_id


@contextmanager
def unit_of_work(session: Session, operation: str):
    """Commit everything done in the block, or roll all of it back."""
    try:
        yield
        session.commit()
    except SchedulingError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("%s failed; transaction rolled back", operation)
        raise StorageFailure(f"{operation} failed and was rolled back") from exc
    except Exception:
        session.rollback()
        raise


def _check_range(name: str, value: int, bounds: Tuple[int, int]):
    low, high = bounds
    if value is None or not low <= value <= high:
        raise InvalidInput(f"{name} must be between {low} and {high}")


class ConflictDetector:
    """Detect overlapping slots in one interviewer's calendar."""
    def __init__(self, session: Session):
        self.slot_repo = repositories.SlotRepository(session)

    def conflicting_slots(self, interviewer_id: str, interview_date: date, start, end, exclude_slot_id: int = None) -> List[models.InterviewSlot]:
        return [
            s for s in self.slot_repo.list_for_interviewer_day(interviewer_id, interview_date)
            if s.id != exclude_slot_id and intervals_overlap(s.start_time, s.end_time, start, end)
        ]

    def has_conflict(self, interviewer_id: str, interview_date: date, start, end, exclude_slot_id: int = None) -> bool:
        """True when any slot of the interviewer on that date overlaps [start, end)."""
        return bool(self.conflicting_slots(interviewer_id, interview_date, start, end, exclude_slot_id))


class SlotService:
    """Create, update, delete and list interview slots."""
    def __init__(self, session: Session, clock: Clock = models.utcnow, timezone_name: str = None):
        self.session = session
        self.clock = clock
        self.timezone_name = timezone_name or settings.SCHEDULE_TIMEZONE
        self.slot_repo = repositories.SlotRepository(session)
        self.directory = repositories.DirectoryRepository(session)
        self.conflicts = ConflictDetector(session)

    def create_slot(self, data: SlotCreateIn, created_by: str) -> models.InterviewSlot:
        """Validate and persist a new slot.

        The row is inserted first and the overlap check runs afterwards in
        the same transaction, excluding the new row. On SQLite the insert
        holds the write lock, so a concurrent overlapping create waits and
        then sees this slot.
        """
        if not data.scholarship_id or data.scholarship_id <= 0 or not data.interviewer_id or not data.interview_date:
            raise InvalidInput("scholarship_id, interviewer_id and interview_date are required")
        day, start, end = validate_time_range(
            data.interview_date, data.start_time, data.end_time, today_in(self.timezone_name, self.clock())
        )
        max_capacity = 1 if data.max_capacity is None else data.max_capacity
        if max_capacity < 1:
            raise InvalidInput("max_capacity must be at least 1")
        try:
            slot_type = models.SlotType(data.slot_type or models.SlotType.INDIVIDUAL.value)
        except ValueError:
            raise InvalidInput("slot_type must be 'individual' or 'group'")
        duration = 30 if data.duration_minutes is None else data.duration_minutes
        _check_range("duration_minutes", duration, DURATION_RANGE)
        preparation = 0 if data.preparation_time is None else data.preparation_time
        _check_range("preparation_time", preparation, PREPARATION_RANGE)
        if self.directory.get_scholarship(data.scholarship_id) is None:
            raise NotFound(f"scholarship {data.scholarship_id} not found")

        now = self.clock()
        slot = models.InterviewSlot(
            scholarship_id=data.scholarship_id,
            interviewer_id=data.interviewer_id,
            interview_date=day,
            start_time=start,
            end_time=end,
            location=data.location or "",
            building=data.building or "",
            floor=data.floor or "",
            room=data.room or "",
            max_capacity=max_capacity,
            current_bookings=0,
            is_available=True,
            slot_type=slot_type.value,
            duration_minutes=duration,
            preparation_time=preparation,
            notes=data.notes or "",
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        with unit_of_work(self.session, "create slot"):
            self.slot_repo.add(slot)
            if self.conflicts.has_conflict(data.interviewer_id, day, start, end, exclude_slot_id=slot.id):
                raise SlotConflict(
                    f"interviewer {data.interviewer_id} already has a slot overlapping "
                    f"{day.isoformat()} {format_time(start)}-{format_time(end)}"
                )
        self.session.refresh(slot)
        record_event("slot_created", slot_id=slot.id, interviewer_id=slot.interviewer_id,
                     date=slot.interview_date.isoformat(), created_by=created_by)
        return slot

    def get_slot(self, slot_id: int) -> models.InterviewSlot:
        slot = self.slot_repo.get(slot_id)
        if slot is None:
            raise NotFound(f"interview slot {slot_id} not found")
        return slot

    def update_slot(self, slot_id: int, changes: Dict) -> models.InterviewSlot:
        """Apply the fields present in `changes`; absent fields are left untouched."""
        slot = self.get_slot(slot_id)
        if not changes:
            raise InvalidInput("no fields to update")
        values = {}
        for field in ("location", "building", "floor", "room", "notes"):
            if field in changes:
                values[field] = changes[field] or ""
        if "max_capacity" in changes:
            if changes["max_capacity"] is None or changes["max_capacity"] < 1:
                raise InvalidInput("max_capacity must be at least 1")
            if changes["max_capacity"] < slot.current_bookings:
                raise CapacityBelowBookings(
                    f"max_capacity cannot be lower than current bookings ({slot.current_bookings})"
                )
            values["max_capacity"] = changes["max_capacity"]
        if "is_available" in changes:
            if changes["is_available"] is None:
                raise InvalidInput("is_available must be true or false")
            if changes["is_available"] is False and slot.current_bookings > 0:
                raise CannotDisableBookedSlot("cannot make a slot with bookings unavailable")
            values["is_available"] = changes["is_available"]
        if "duration_minutes" in changes:
            _check_range("duration_minutes", changes["duration_minutes"], DURATION_RANGE)
            values["duration_minutes"] = changes["duration_minutes"]
        if "preparation_time" in changes:
            _check_range("preparation_time", changes["preparation_time"], PREPARATION_RANGE)
            values["preparation_time"] = changes["preparation_time"]

        with unit_of_work(self.session, "update slot"):
            if not self.slot_repo.update_fields(slot_id, values):
                self._explain_rejected_update(slot_id, values)
        self.session.refresh(slot)
        record_event("slot_updated", slot_id=slot_id, fields=sorted(values))
        return slot

    def _explain_rejected_update(self, slot_id: int, values: Dict):
        """A guarded UPDATE matched nothing: a booking landed after the pre-check."""
        current = self.slot_repo.current_bookings(slot_id)
        if current is None:
            raise NotFound(f"interview slot {slot_id} not found")
        if "max_capacity" in values and values["max_capacity"] < current:
            raise CapacityBelowBookings(f"max_capacity cannot be lower than current bookings ({current})")
        if values.get("is_available") is False and current > 0:
            raise CannotDisableBookedSlot("cannot make a slot with bookings unavailable")
        raise StorageFailure(f"slot {slot_id} could not be updated")

    def delete_slot(self, slot_id: int) -> None:
        slot = self.get_slot(slot_id)
        if slot.current_bookings > 0:
            raise SlotHasBookings("cannot delete a slot that has bookings")
        with unit_of_work(self.session, "delete slot"):
            if not self.slot_repo.delete_if_empty(slot_id):
                if self.slot_repo.current_bookings(slot_id) is None:
                    raise NotFound(f"interview slot {slot_id} not found")
                raise SlotHasBookings("cannot delete a slot that has bookings")
        record_event("slot_deleted", slot_id=slot_id)

    def list_slots(self, filters: Dict, page: Page) -> Tuple[List[models.InterviewSlot], int]:
        return self.slot_repo.list_page(filters, page.limit, page.offset)

    def present(self, slots: Iterable[models.InterviewSlot]) -> List[dict]:
        """Slot payloads with scholarship and interviewer names joined in."""
        slots = list(slots)
        scholarships = self.directory.scholarships_by_id(s.scholarship_id for s in slots)
        users = self.directory.users_by_id(s.interviewer_id for s in slots)
        return [slot_to_dict(s, scholarships.get(s.scholarship_id), users.get(s.interviewer_id)) for s in slots]


def slot_to_dict(slot: models.InterviewSlot, scholarship: models.Scholarship = None, interviewer: models.User = None) -> dict:
    return {
        "id": slot.id,
        "scholarship_id": slot.scholarship_id,
        "scholarship_name": scholarship.scholarship_name if scholarship else None,
        "interviewer_id": slot.interviewer_id,
        "interviewer_name": display_name(interviewer, slot.interviewer_id),
        "interview_date": slot.interview_date.isoformat(),
        "start_time": format_time(slot.start_time),
        "end_time": format_time(slot.end_time),
        "location": slot.location,
        "building": slot.building,
        "floor": slot.floor,
        "room": slot.room,
        "max_capacity": slot.max_capacity,
        "current_bookings": slot.current_bookings,
        "is_available": slot.is_available,
        "is_bookable": slot.is_bookable,
        "slot_type": slot.slot_type,
        "duration_minutes": slot.duration_minutes,
        "preparation_time": slot.preparation_time,
        "notes": slot.notes,
        "created_by": slot.created_by,
        "created_at": _iso(slot.created_at),
        "updated_at": _iso(slot.updated_at),
    }


def booking_to_dict(
    booking: models.InterviewBooking,
    slot: models.InterviewSlot = None,
    scholarship: models.Scholarship = None,
    student: models.User = None,
) -> dict:
    out = {
        "id": booking.id,
        "slot_id": booking.slot_id,
        "application_id": booking.application_id,
        "student_id": booking.student_id,
        "student_name": display_name(student, booking.student_id),
        "booking_status": booking.booking_status,
        "booked_at": _iso(booking.booked_at),
        "confirmed_at": _iso(booking.confirmed_at),
        "cancelled_at": _iso(booking.cancelled_at),
        "cancellation_reason": booking.cancellation_reason,
        "rescheduled_from_slot_id": booking.rescheduled_from_slot_id,
        "rescheduled_to_slot_id": booking.rescheduled_to_slot_id,
        "student_notes": booking.student_notes,
        "officer_notes": booking.officer_notes,
        "reminder_sent_at": _iso(booking.reminder_sent_at),
        "check_in_time": _iso(booking.check_in_time),
        "check_out_time": _iso(booking.check_out_time),
        "actual_duration_minutes": booking.actual_duration_minutes,
        "created_at": _iso(booking.created_at),
        "updated_at": _iso(booking.updated_at),
        "slot": None,
    }
    if slot is not None:
        out["slot"] = {
            "id": slot.id,
            "scholarship_id": slot.scholarship_id,
            "scholarship_name": scholarship.scholarship_name if scholarship else None,
            "interview_date": slot.interview_date.isoformat(),
            "start_time": format_time(slot.start_time),
            "end_time": format_time(slot.end_time),
            "location": slot.location_label,
            "interviewer_id": slot.interviewer_id,
        }
    return out


class BookingService:
    """Student bookings and their lifecycle transitions."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.slot_repo = repositories.SlotRepository(session)
        self.booking_repo = repositories.BookingRepository(session)
        self.directory = repositories.DirectoryRepository(session)

    def resolve_student_id(self, user_id: str) -> str:
        """Canonical student id for an account, or the account id itself."""
        return self.directory.student_id_for_user(user_id) or user_id

    def create_booking(self, user_id: str, slot_id: int, student_notes: str = "") -> models.InterviewBooking:
        """Book `slot_id` for the caller's eligible application.

        The seat is taken with a conditional increment and the booking row
        inserted in the same transaction; if either fails neither persists.
        """
        slot = self.slot_repo.get(slot_id)
        if slot is None:
            raise NotFound(f"interview slot {slot_id} not found")
        if not slot.is_bookable:
            raise SlotNotBookable("this interview slot cannot be booked")
        student_id = self.resolve_student_id(user_id)
        application = self.directory.eligible_application(student_id, slot.scholarship_id)
        if application is None:
            raise NoEligibleApplication("no eligible application found for this scholarship")
        if self.booking_repo.has_active_for_application(application.application_id):
            raise DuplicateBooking("an interview is already booked for this application")

        now = self.clock()
        booking = models.InterviewBooking(
            slot_id=slot_id,
            application_id=application.application_id,
            student_id=student_id,
            booking_status=BookingStatus.BOOKED.value,
            booked_at=now,
            student_notes=student_notes or "",
            created_at=now,
            updated_at=now,
        )
        with unit_of_work(self.session, "create booking"):
            if not self.slot_repo.try_increment(slot_id):
                raise SlotNotBookable("this interview slot is no longer available")
            try:
                self.booking_repo.add(booking)
            except IntegrityError as exc:
                raise DuplicateBooking("an interview is already booked for this application") from exc
        self.session.refresh(booking)
        record_event("booking_created", booking_id=booking.id, slot_id=slot_id,
                     application_id=booking.application_id, student_id=student_id)
        return booking

    def get_booking(self, booking_id: int) -> models.InterviewBooking:
        booking = self.booking_repo.get(booking_id)
        if booking is None:
            raise NotFound(f"interview booking {booking_id} not found")
        return booking

    def ensure_access(self, booking: models.InterviewBooking, user_id: str, is_staff: bool) -> None:
        """Students may only touch their own bookings; staff may touch any."""
        if is_staff:
            return
        if booking.student_id not in {user_id, self.resolve_student_id(user_id)}:
            raise Forbidden("you do not have access to this booking")

    def list_bookings(self, filters: Dict, page: Page):
        return self.booking_repo.list_page(filters, page.limit, page.offset)

    def present(self, pairs: Iterable[Tuple[models.InterviewBooking, Optional[models.InterviewSlot]]]) -> List[dict]:
        """Booking payloads with slot summary, scholarship and student names joined in."""
        pairs = list(pairs)
        scholarships = self.directory.scholarships_by_id(s.scholarship_id for _, s in pairs if s is not None)
        students = self.directory.users_by_student_id(b.student_id for b, _ in pairs)
        return [
            booking_to_dict(b, s, scholarships.get(s.scholarship_id) if s else None, students.get(b.student_id))
            for b, s in pairs
        ]

    def present_one(self, booking: models.InterviewBooking) -> dict:
        return self.present([(booking, self.slot_repo.get(booking.slot_id))])[0]

    def update_booking(self, booking_id: int, changes: Dict) -> models.InterviewBooking:
        """Officer edit of notes/status. Occupancy counters are not adjusted."""
        booking = self.get_booking(booking_id)
        if not changes:
            raise InvalidInput("no fields to update")
        values = {k: (v or "") if k != "booking_status" else v for k, v in changes.items()}
        if "booking_status" in values:
            if values["booking_status"] is None:
                raise InvalidInput("booking_status cannot be null")
            values["booking_status"] = BookingStatus(values["booking_status"]).value
        values["updated_at"] = self.clock()
        with unit_of_work(self.session, "update booking"):
            try:
                self.booking_repo.update_if(booking_id, {}, values)
            except IntegrityError as exc:
                raise DuplicateBooking("the application already has an active booking") from exc
        self.session.refresh(booking)
        record_event("booking_updated", booking_id=booking_id, fields=sorted(changes))
        return booking

    @staticmethod
    def guard(booking: models.InterviewBooking, action: BookingAction) -> BookingStatus:
        """Raise the specific error for `action` on the booking's current state, else return the next status."""
        if action == BookingAction.CHECK_IN and booking.check_in_time is not None:
            raise AlreadyCheckedIn("booking is already checked in")
        if action == BookingAction.CHECK_OUT:
            if booking.check_in_time is None:
                raise CheckInRequired("booking must be checked in before check-out")
            if booking.check_out_time is not None:
                raise AlreadyCheckedOut("booking is already checked out")
        return next_status(booking.booking_status, action)

    def _transition(self, booking: models.InterviewBooking, action: BookingAction, expected: Dict, values: Dict):
        """Conditionally write a transition; re-run the guards if the row moved underneath."""
        if self.booking_repo.update_if(booking.id, expected, values):
            return
        self.session.refresh(booking)
        self.guard(booking, action)
        raise StorageFailure(f"booking {booking.id} changed during {action.value.replace('_', '-')}; please retry")

    def confirm(self, booking_id: int) -> models.InterviewBooking:
        booking = self.get_booking(booking_id)
        status = self.guard(booking, BookingAction.CONFIRM)
        now = self.clock()
        with unit_of_work(self.session, "confirm booking"):
            self._transition(
                booking,
                BookingAction.CONFIRM,
                {"booking_status": booking.booking_status},
                {"booking_status": status.value, "confirmed_at": now, "updated_at": now},
            )
        self.session.refresh(booking)
        record_event("booking_confirmed", booking_id=booking_id)
        return booking

    def cancel(self, booking_id: int, reason: str = "") -> models.InterviewBooking:
        """Cancel and release the seat. The decrement must succeed or nothing changes."""
        booking = self.get_booking(booking_id)
        status = self.guard(booking, BookingAction.CANCEL)
        slot_id = booking.slot_id
        now = self.clock()
        with unit_of_work(self.session, "cancel booking"):
            self._transition(
                booking,
                BookingAction.CANCEL,
                {"booking_status": booking.booking_status, "slot_id": slot_id},
                {
                    "booking_status": status.value,
                    "cancelled_at": now,
                    "cancellation_reason": reason or "",
                    "updated_at": now,
                },
            )
            if not self.slot_repo.try_decrement(slot_id):
                raise StorageFailure(f"occupancy counter of slot {slot_id} could not be released")
        self.session.refresh(booking)
        record_event("booking_cancelled", booking_id=booking_id, slot_id=slot_id, reason=reason or "")
        return booking

    def check_in(self, booking_id: int) -> models.InterviewBooking:
        booking = self.get_booking(booking_id)
        self.guard(booking, BookingAction.CHECK_IN)
        now = self.clock()
        with unit_of_work(self.session, "check in booking"):
            self._transition(
                booking,
                BookingAction.CHECK_IN,
                {"booking_status": booking.booking_status, "check_in_time": None},
                {"check_in_time": now, "updated_at": now},
            )
        self.session.refresh(booking)
        record_event("booking_checked_in", booking_id=booking_id)
        return booking

    def check_out(self, booking_id: int) -> models.InterviewBooking:
        """Stamp check-out, derive the actual duration and complete the booking."""
        booking = self.get_booking(booking_id)
        status = self.guard(booking, BookingAction.CHECK_OUT)
        now = self.clock()
        duration = max(0, minutes_between(booking.check_in_time, now))
        with unit_of_work(self.session, "check out booking"):
            self._transition(
                booking,
                BookingAction.CHECK_OUT,
                {"booking_status": booking.booking_status, "check_out_time": None},
                {
                    "check_out_time": now,
                    "actual_duration_minutes": duration,
                    "booking_status": status.value,
                    "updated_at": now,
                },
            )
        self.session.refresh(booking)
        record_event("booking_checked_out", booking_id=booking_id, actual_duration_minutes=duration)
        return booking

    def mark_reminder_sent(self, booking_id: int) -> models.InterviewBooking:
        """Stamp `reminder_sent_at` on behalf of the external reminder system."""
        booking = self.get_booking(booking_id)
        now = self.clock()
        with unit_of_work(self.session, "mark reminder sent"):
            self.booking_repo.update_if(booking_id, {}, {"reminder_sent_at": now, "updated_at": now})
        self.session.refresh(booking)
        return booking


class RescheduleCoordinator:
    """Move a booking between slots as one transaction."""
    def __init__(self, session: Session, clock: Clock = models.utcnow):
        self.session = session
        self.clock = clock
        self.slot_repo = repositories.SlotRepository(session)
        self.booking_repo = repositories.BookingRepository(session)

    def reschedule(self, booking_id: int, new_slot_id: int, reason: str = "") -> models.InterviewBooking:
        """Reassign the booking to `new_slot_id` and rebalance both counters.

        The booking update, the old slot's decrement and the new slot's
        conditional increment commit together; if any of them fails the
        booking and both slots are left exactly as they were.
        """
        booking = self.booking_repo.get_for_update(booking_id)
        if booking is None:
            raise NotFound(f"interview booking {booking_id} not found")
        status = next_status(booking.booking_status, BookingAction.RESCHEDULE)
        old_slot_id = booking.slot_id
        if new_slot_id == old_slot_id:
            raise InvalidInput("booking is already on this slot")
        new_slot = self.slot_repo.get(new_slot_id)
        if new_slot is None:
            raise NotFound(f"interview slot {new_slot_id} not found")
        if not new_slot.is_bookable:
            raise SlotNotBookable("the new interview slot cannot be booked")

        now = self.clock()
        values = {
            "slot_id": new_slot_id,
            "rescheduled_from_slot_id": old_slot_id,
            "rescheduled_to_slot_id": new_slot_id,
            "booking_status": status.value,
            "confirmed_at": None,
            "updated_at": now,
        }
        if reason:
            values["officer_notes"] = f"{booking.officer_notes}\n[rescheduled] {reason}".strip()
        with unit_of_work(self.session, "reschedule booking"):
            if not self.booking_repo.update_if(
                booking_id, {"booking_status": booking.booking_status, "slot_id": old_slot_id}, values
            ):
                self._explain_moved_booking(booking, new_slot_id)
            if not self.slot_repo.try_decrement(old_slot_id):
                raise StorageFailure(f"occupancy counter of slot {old_slot_id} could not be released")
            if not self.slot_repo.try_increment(new_slot_id):
                raise SlotNotBookable("the new interview slot is no longer available")
        self.session.refresh(booking)
        record_event("booking_rescheduled", booking_id=booking_id,
                     from_slot_id=old_slot_id, to_slot_id=new_slot_id, reason=reason or "")
        return booking

    def _explain_moved_booking(self, booking: models.InterviewBooking, new_slot_id: int):
        """The booking changed after it was read: report why, or ask for a retry."""
        self.session.refresh(booking)
        next_status(booking.booking_status, BookingAction.RESCHEDULE)
        if booking.slot_id == new_slot_id:
            raise InvalidInput("booking is already on this slot")
        raise StorageFailure(f"booking {booking.id} changed during reschedule; please retry")


class AvailabilityService:
    """Day-by-day calendar of a scholarship's interview slots."""
    def __init__(self, session: Session, clock: Clock = models.utcnow, timezone_name: str = None):
        self.clock = clock
        self.timezone_name = timezone_name or settings.SCHEDULE_TIMEZONE
        self.slot_repo = repositories.SlotRepository(session)
        self.directory = repositories.DirectoryRepository(session)

    def get_availability(self, scholarship_id: Optional[int], date_from: str = None, date_to: str = None) -> List[dict]:
        """Group slots in [date_from, date_to] by day, days and slots in chronological order."""
        if scholarship_id is None:
            raise InvalidInput("scholarship_id is required")
        default_from, default_to = month_window(today_in(self.timezone_name, self.clock()))
        start = parse_date(date_from, "date_from") if date_from else default_from
        end = parse_date(date_to, "date_to") if date_to else default_to
        if start > end:
            raise InvalidInput("date_from must not be after date_to")

        slots = self.slot_repo.list_for_scholarship(scholarship_id, start, end)
        interviewers = self.directory.users_by_id(s.interviewer_id for s in slots)
        days: Dict[date, dict] = {}
        for slot in slots:
            day = days.setdefault(slot.interview_date, {
                "date": slot.interview_date.isoformat(),
                "day_of_week": DAY_NAMES[slot.interview_date.weekday()],
                "total_slots": 0,
                "available_slots": 0,
                "booked_slots": 0,
                "time_slots": [],
            })
            is_full = slot.current_bookings >= slot.max_capacity
            day["total_slots"] += 1
            if slot.is_bookable:
                day["available_slots"] += 1
            if is_full:
                day["booked_slots"] += 1
            day["time_slots"].append({
                "slot_id": slot.id,
                "start_time": format_time(slot.start_time),
                "end_time": format_time(slot.end_time),
                "is_available": slot.is_bookable,
                "is_booked": is_full,
                "current_bookings": slot.current_bookings,
                "max_capacity": slot.max_capacity,
                "location": slot.location_label,
                "interviewer": display_name(interviewers.get(slot.interviewer_id), slot.interviewer_id),
                "duration_minutes": slot.duration_minutes,
            })
        result = []
        for key in sorted(days):
            day = days[key]
            day["time_slots"].sort(key=lambda t: (t["start_time"], t["slot_id"]))
            result.append(day)
        return result


class StatisticsService:
    """Read-only rollups over slots and their bookings."""
    def __init__(self, session: Session, clock: Clock = models.utcnow, timezone_name: str = None):
        self.clock = clock
        self.timezone_name = timezone_name or settings.SCHEDULE_TIMEZONE
        self.slot_repo = repositories.SlotRepository(session)

    def get_statistics(self, scholarship_id: Optional[int] = None, date_from: str = None, date_to: str = None) -> dict:
        default_from, default_to = month_window(today_in(self.timezone_name, self.clock()), forward=False)
        start = parse_date(date_from, "date_from") if date_from else default_from
        end = parse_date(date_to, "date_to") if date_to else default_to
        if start > end:
            raise InvalidInput("date_from must not be after date_to")

        stats = self.slot_repo.statistics(start, end, scholarship_id)
        total_slots = stats["total_slots"] or 0
        total_bookings = stats["total_bookings"] or 0
        avg = stats["avg_duration"]
        return {
            "total_slots": total_slots,
            "available_slots": stats["available_slots"] or 0,
            "total_bookings": total_bookings,
            "confirmed_bookings": stats["confirmed_bookings"] or 0,
            "cancelled_bookings": stats["cancelled_bookings"] or 0,
            "completed_bookings": stats["completed_bookings"] or 0,
            "checked_in": stats["checked_in"] or 0,
            "avg_duration": round(float(avg), 2) if avg is not None else 0.0,
            "utilization_rate": round(total_bookings / total_slots * 100, 2) if total_slots else 0.0,
            "by_status": self.slot_repo.booking_counts_by_status(start, end, scholarship_id),
            "date_from": start.isoformat(),
            "date_to": end.isoformat(),
        }
