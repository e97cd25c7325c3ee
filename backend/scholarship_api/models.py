"""SQLModel data models.

This module defines the application's database tables using SQLModel.
`InterviewSlot` and `InterviewBooking` are owned by the scheduling core;
`User`, `Student`, `Scholarship` and `ScholarshipApplication` belong to
collaborating subsystems and are only read here.
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, Index, text
from sqlmodel import SQLModel, Field

from .lifecycle import BookingStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(nullable: bool = True, **kwargs):
    return Field(sa_column=Column(DateTime(timezone=True), nullable=nullable), **kwargs)


class SlotType(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


ELIGIBLE_APPLICATION_STATUSES = (
    ApplicationStatus.SUBMITTED.value,
    ApplicationStatus.UNDER_REVIEW.value,
    ApplicationStatus.APPROVED.value,
)


class User(SQLModel, table=True):
    """An account known to the identity service; interviewers and students are users."""
    user_id: str = Field(primary_key=True)
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None


class Student(SQLModel, table=True):
    """Student profile linked to an account."""
    student_id: str = Field(primary_key=True)
    user_id: str = Field(index=True, unique=True)


class Scholarship(SQLModel, table=True):
    scholarship_id: Optional[int] = Field(default=None, primary_key=True)
    scholarship_name: str


class ScholarshipApplication(SQLModel, table=True):
    """A student's application to a scholarship.

    Only `application_status` and the timestamps matter to scheduling: the
    most recent submitted/under-review/approved application is the one a
    booking is attached to.
    """
    application_id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(index=True)
    scholarship_id: int = Field(foreign_key="scholarship.scholarship_id", index=True)
    application_status: str = ApplicationStatus.DRAFT.value
    submitted_at: Optional[datetime] = _timestamp()
    created_at: Optional[datetime] = _timestamp(default_factory=utcnow)


class InterviewSlot(SQLModel, table=True):
    """A bounded-capacity appointment window offered by one interviewer.

    `current_bookings` is the occupancy counter. It is only ever changed by
    conditional UPDATE statements in the repository; the CHECK constraint
    keeps it within `0..max_capacity` even if a caller gets that wrong.
    """
    __table_args__ = (
        CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= max_capacity",
            name="ck_interviewslot_occupancy",
        ),
        CheckConstraint("max_capacity >= 1", name="ck_interviewslot_capacity"),
        Index("ix_interviewslot_interviewer_date", "interviewer_id", "interview_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    scholarship_id: int = Field(foreign_key="scholarship.scholarship_id", index=True)
    interviewer_id: str = Field(index=True)
    interview_date: date = Field(index=True)
    start_time: time
    end_time: time
    location: str = ""
    building: str = ""
    floor: str = ""
    room: str = ""
    max_capacity: int = 1
    current_bookings: int = 0
    is_available: bool = True
    slot_type: str = SlotType.INDIVIDUAL.value
    duration_minutes: int = 30
    preparation_time: int = 0
    notes: str = ""
    created_by: str
    created_at: Optional[datetime] = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: Optional[datetime] = _timestamp(nullable=False, default_factory=utcnow)

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_available) and self.current_bookings < self.max_capacity

    @property
    def location_label(self) -> str:
        parts = (self.building, self.floor, self.room, self.location)
        return " ".join(p.strip() for p in parts if p and p.strip())


class InterviewBooking(SQLModel, table=True):
    """A student's claim on one slot for one application.

    `slot_id` is a plain indexed column rather than a foreign key: the slot
    is looked up to keep its counter in sync, but a slot whose bookings
    were all cancelled may still be deleted. Rows are never deleted.
    """
    __table_args__ = (
        Index(
            "uq_interviewbooking_active_application",
            "application_id",
            unique=True,
            sqlite_where=text("booking_status IN ('booked', 'confirmed')"),
            postgresql_where=text("booking_status IN ('booked', 'confirmed')"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    slot_id: int = Field(index=True)
    application_id: int = Field(foreign_key="scholarshipapplication.application_id", index=True)
    student_id: str = Field(index=True)
    booking_status: str = Field(default=BookingStatus.BOOKED.value, index=True)
    booked_at: Optional[datetime] = _timestamp(nullable=False, default_factory=utcnow)
    confirmed_at: Optional[datetime] = _timestamp()
    cancelled_at: Optional[datetime] = _timestamp()
    cancellation_reason: str = ""
    rescheduled_from_slot_id: Optional[int] = None
    rescheduled_to_slot_id: Optional[int] = None
    student_notes: str = ""
    officer_notes: str = ""
    reminder_sent_at: Optional[datetime] = _timestamp()
    check_in_time: Optional[datetime] = _timestamp()
    check_out_time: Optional[datetime] = _timestamp()
    actual_duration_minutes: Optional[int] = None
    created_at: Optional[datetime] = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: Optional[datetime] = _timestamp(nullable=False, default_factory=utcnow)
