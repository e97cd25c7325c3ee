"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (slots,
bookings, and the directory of users/students/scholarships/applications
owned by other subsystems). Repositories never commit: the services own
the transaction boundary so that multi-step changes commit or roll back
together. Occupancy counters are only changed through the conditional
UPDATE helpers on `SlotRepository`.
"""

from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, delete, distinct, func, update
from sqlmodel import Session, select

from . import models
from .lifecycle import ACTIVE_STATUSES


class SlotRepository:
    """Queries and guarded writes for `InterviewSlot` rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, slot: models.InterviewSlot) -> models.InterviewSlot:
        """Stage a new slot and flush it to obtain an id."""
        self.session.add(slot)
        self.session.flush()
        return slot

    def get(self, slot_id: int) -> Optional[models.InterviewSlot]:
        return self.session.get(models.InterviewSlot, slot_id)

    def list_for_interviewer_day(self, interviewer_id: str, interview_date: date) -> List[models.InterviewSlot]:
        """Return the interviewer's slots on one calendar day ordered by start time."""
        stmt = (
            select(models.InterviewSlot)
            .where(
                models.InterviewSlot.interviewer_id == interviewer_id,
                models.InterviewSlot.interview_date == interview_date,
            )
            .order_by(models.InterviewSlot.start_time)
        )
        return list(self.session.exec(stmt).all())

    def current_bookings(self, slot_id: int) -> Optional[int]:
        """Read the committed-or-own-transaction counter straight from the table."""
        stmt = select(models.InterviewSlot.current_bookings).where(models.InterviewSlot.id == slot_id)
        return self.session.exec(stmt).first()

    def try_increment(self, slot_id: int) -> bool:
        """Take one seat if the slot is bookable; return False when it is not."""
        stmt = (
            update(models.InterviewSlot)
            .where(
                models.InterviewSlot.id == slot_id,
                models.InterviewSlot.is_available == True,  # noqa: E712
                models.InterviewSlot.current_bookings < models.InterviewSlot.max_capacity,
            )
            .values(
                current_bookings=models.InterviewSlot.current_bookings + 1,
                updated_at=models.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount == 1

    def try_decrement(self, slot_id: int) -> bool:
        """Release one seat; return False when the counter is already zero or the slot is gone."""
        stmt = (
            update(models.InterviewSlot)
            .where(models.InterviewSlot.id == slot_id, models.InterviewSlot.current_bookings > 0)
            .values(
                current_bookings=models.InterviewSlot.current_bookings - 1,
                updated_at=models.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount == 1

    def update_fields(self, slot_id: int, values: Dict) -> bool:
        """Apply `values` to the slot while re-checking the occupancy guards.

        A new `max_capacity` only applies when it still covers
        `current_bookings`, and `is_available=False` only applies when the
        slot has no bookings. Returns False when a guard (or the id) did
        not match.
        """
        conditions = [models.InterviewSlot.id == slot_id]
        if "max_capacity" in values:
            conditions.append(models.InterviewSlot.current_bookings <= values["max_capacity"])
        if values.get("is_available") is False:
            conditions.append(models.InterviewSlot.current_bookings == 0)
        stmt = (
            update(models.InterviewSlot)
            .where(and_(*conditions))
            .values(**values, updated_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount == 1

    def delete_if_empty(self, slot_id: int) -> bool:
        stmt = (
            delete(models.InterviewSlot)
            .where(models.InterviewSlot.id == slot_id, models.InterviewSlot.current_bookings == 0)
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount == 1

    def _filtered(self, stmt, filters: Dict):
        if filters.get("scholarship_id") is not None:
            stmt = stmt.where(models.InterviewSlot.scholarship_id == filters["scholarship_id"])
        if filters.get("interviewer_id"):
            stmt = stmt.where(models.InterviewSlot.interviewer_id == filters["interviewer_id"])
        if filters.get("date_from") is not None:
            stmt = stmt.where(models.InterviewSlot.interview_date >= filters["date_from"])
        if filters.get("date_to") is not None:
            stmt = stmt.where(models.InterviewSlot.interview_date <= filters["date_to"])
        if filters.get("is_available") is not None:
            stmt = stmt.where(models.InterviewSlot.is_available == filters["is_available"])
        if filters.get("slot_type"):
            stmt = stmt.where(models.InterviewSlot.slot_type == filters["slot_type"])
        return stmt

    def list_page(self, filters: Dict, limit: int, offset: int) -> Tuple[List[models.InterviewSlot], int]:
        """Return one ordered page of slots matching `filters` and the total match count."""
        count_stmt = self._filtered(select(func.count()).select_from(models.InterviewSlot), filters)
        total = self.session.exec(count_stmt).one()
        stmt = self._filtered(select(models.InterviewSlot), filters).order_by(
            models.InterviewSlot.interview_date, models.InterviewSlot.start_time, models.InterviewSlot.id
        )
        return list(self.session.exec(stmt.offset(offset).limit(limit)).all()), total

    def list_for_scholarship(self, scholarship_id: int, date_from: date, date_to: date) -> List[models.InterviewSlot]:
        """All slots (bookable or not) of a scholarship in [date_from, date_to]."""
        stmt = self._filtered(
            select(models.InterviewSlot),
            {"scholarship_id": scholarship_id, "date_from": date_from, "date_to": date_to},
        ).order_by(models.InterviewSlot.interview_date, models.InterviewSlot.start_time, models.InterviewSlot.id)
        return list(self.session.exec(stmt).all())

    def statistics(self, date_from: date, date_to: date, scholarship_id: Optional[int] = None) -> Dict:
        """Aggregate slot/booking counts for slots dated within the range."""
        slot = models.InterviewSlot
        booking = models.InterviewBooking

        def count_bookings_where(condition):
            return func.count(distinct(case((condition, booking.id))))

        stmt = (
            select(
                func.count(distinct(slot.id)),
                func.count(distinct(case((slot.is_available == True, slot.id)))),  # noqa: E712
                func.count(distinct(booking.id)),
                count_bookings_where(booking.booking_status == "confirmed"),
                count_bookings_where(booking.booking_status == "cancelled"),
                count_bookings_where(booking.booking_status == "completed"),
                count_bookings_where(booking.check_in_time.is_not(None)),
                func.avg(booking.actual_duration_minutes),
            )
            .select_from(slot)
            .outerjoin(booking, booking.slot_id == slot.id)
            .where(slot.interview_date >= date_from, slot.interview_date <= date_to)
        )
        if scholarship_id is not None:
            stmt = stmt.where(slot.scholarship_id == scholarship_id)
        row = self.session.exec(stmt).one()
        keys = (
            "total_slots", "available_slots", "total_bookings", "confirmed_bookings",
            "cancelled_bookings", "completed_bookings", "checked_in", "avg_duration",
        )
        return dict(zip(keys, row))

    def booking_counts_by_status(self, date_from: date, date_to: date, scholarship_id: Optional[int] = None) -> Dict[str, int]:
        slot = models.InterviewSlot
        booking = models.InterviewBooking
        stmt = (
            select(booking.booking_status, func.count(booking.id))
            .join(slot, booking.slot_id == slot.id)
            .where(slot.interview_date >= date_from, slot.interview_date <= date_to)
            .group_by(booking.booking_status)
        )
        if scholarship_id is not None:
            stmt = stmt.where(slot.scholarship_id == scholarship_id)
        return {status: count for status, count in self.session.exec(stmt).all()}


class BookingRepository:
    """Queries and writes for `InterviewBooking` rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, booking: models.InterviewBooking) -> models.InterviewBooking:
        """Stage a booking and flush so unique-index violations surface here."""
        self.session.add(booking)
        self.session.flush()
        return booking

    def get(self, booking_id: int) -> Optional[models.InterviewBooking]:
        return self.session.get(models.InterviewBooking, booking_id)

    def get_for_update(self, booking_id: int) -> Optional[models.InterviewBooking]:
        """Load a booking with a row lock where the backend supports it."""
        stmt = (
            select(models.InterviewBooking)
            .where(models.InterviewBooking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def update_if(self, booking_id: int, expected: Dict, values: Dict) -> bool:
        """Write `values` only if the row still matches `expected` column values.

        A `None` in `expected` means the column must be NULL. Returns False
        when another request changed the booking since it was read.
        """
        conditions = [models.InterviewBooking.id == booking_id]
        for column, value in expected.items():
            attr = getattr(models.InterviewBooking, column)
            conditions.append(attr.is_(None) if value is None else attr == value)
        stmt = (
            update(models.InterviewBooking)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.exec(stmt).rowcount == 1

    def has_active_for_application(self, application_id: int) -> bool:
        stmt = select(models.InterviewBooking.id).where(
            models.InterviewBooking.application_id == application_id,
            models.InterviewBooking.booking_status.in_([s.value for s in ACTIVE_STATUSES]),
        )
        return self.session.exec(stmt).first() is not None

    def _filtered(self, stmt, filters: Dict):
        slot = models.InterviewSlot
        booking = models.InterviewBooking
        if filters.get("scholarship_id") is not None:
            stmt = stmt.where(slot.scholarship_id == filters["scholarship_id"])
        if filters.get("status"):
            stmt = stmt.where(booking.booking_status == filters["status"])
        if filters.get("date_from") is not None:
            stmt = stmt.where(slot.interview_date >= filters["date_from"])
        if filters.get("date_to") is not None:
            stmt = stmt.where(slot.interview_date <= filters["date_to"])
        if filters.get("student_id"):
            stmt = stmt.where(booking.student_id == filters["student_id"])
        if filters.get("slot_id") is not None:
            stmt = stmt.where(booking.slot_id == filters["slot_id"])
        return stmt

    def list_page(self, filters: Dict, limit: int, offset: int) -> Tuple[List[Tuple[models.InterviewBooking, Optional[models.InterviewSlot]]], int]:
        """Return one page of (booking, slot) pairs and the total match count.

        Bookings whose slot was deleted keep their row; they only show up
        when no slot-based filter is applied.
        """
        slot = models.InterviewSlot
        booking = models.InterviewBooking
        count_stmt = self._filtered(
            select(func.count(booking.id)).select_from(booking).outerjoin(slot, booking.slot_id == slot.id),
            filters,
        )
        total = self.session.exec(count_stmt).one()
        stmt = self._filtered(
            select(booking, slot).outerjoin(slot, booking.slot_id == slot.id),
            filters,
        ).order_by(slot.interview_date, slot.start_time, booking.id)
        rows = self.session.exec(stmt.offset(offset).limit(limit)).all()
        return [(b, s) for b, s in rows], total


class DirectoryRepository:
    """Read access to users, students, scholarships and applications.

    These tables belong to the identity and application subsystems; the
    scheduling core only looks things up in them.
    """
    def __init__(self, session: Session):
        self.session = session

    def users_by_id(self, user_ids: Iterable[str]) -> Dict[str, models.User]:
        ids = {u for u in user_ids if u}
        if not ids:
            return {}
        stmt = select(models.User).where(models.User.user_id.in_(ids))
        return {u.user_id: u for u in self.session.exec(stmt).all()}

    def get_scholarship(self, scholarship_id: int) -> Optional[models.Scholarship]:
        return self.session.get(models.Scholarship, scholarship_id)

    def scholarships_by_id(self, scholarship_ids: Iterable[int]) -> Dict[int, models.Scholarship]:
        ids = {s for s in scholarship_ids if s is not None}
        if not ids:
            return {}
        stmt = select(models.Scholarship).where(models.Scholarship.scholarship_id.in_(ids))
        return {s.scholarship_id: s for s in self.session.exec(stmt).all()}

    def student_id_for_user(self, user_id: str) -> Optional[str]:
        stmt = select(models.Student.student_id).where(models.Student.user_id == user_id)
        return self.session.exec(stmt).first()

    def users_by_student_id(self, student_ids: Iterable[str]) -> Dict[str, models.User]:
        """Map student ids to their account; raw account ids map to themselves."""
        ids = {s for s in student_ids if s}
        if not ids:
            return {}
        stmt = (
            select(models.Student.student_id, models.User)
            .join(models.User, models.User.user_id == models.Student.user_id)
            .where(models.Student.student_id.in_(ids))
        )
        found = {sid: user for sid, user in self.session.exec(stmt).all()}
        for sid, user in self.users_by_id(ids - set(found)).items():
            found[sid] = user
        return found

    def eligible_application(self, student_id: str, scholarship_id: int) -> Optional[models.ScholarshipApplication]:
        """Most recently submitted application that may be interviewed."""
        app = models.ScholarshipApplication
        stmt = (
            select(app)
            .where(
                app.student_id == student_id,
                app.scholarship_id == scholarship_id,
                app.application_status.in_(models.ELIGIBLE_APPLICATION_STATUSES),
            )
            .order_by(func.coalesce(app.submitted_at, app.created_at).desc(), app.application_id.desc())
        )
        return self.session.exec(stmt).first()
