"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable. Field-level semantics (required
fields, HH:MM parsing, capacity rules) are enforced by the services so the
same checks apply to non-HTTP callers; these models only describe shapes.

Partial-update models rely on pydantic's `model_fields_set`: a field that
was not sent is left untouched, a field sent as `null` is an explicit value.
"""

from math import ceil
from typing import Optional

from pydantic import BaseModel, Field

from .lifecycle import BookingStatus


class SlotCreateIn(BaseModel):
    """Payload for publishing a new interview slot."""
    scholarship_id: Optional[int] = None
    interviewer_id: Optional[str] = None
    interview_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: str = ""
    building: str = ""
    floor: str = ""
    room: str = ""
    max_capacity: Optional[int] = None
    slot_type: Optional[str] = None
    duration_minutes: Optional[int] = None
    preparation_time: Optional[int] = None
    notes: str = ""


class SlotUpdateIn(BaseModel):
    """Partial slot update; only fields present in the request are applied."""
    location: Optional[str] = None
    building: Optional[str] = None
    floor: Optional[str] = None
    room: Optional[str] = None
    max_capacity: Optional[int] = None
    is_available: Optional[bool] = None
    duration_minutes: Optional[int] = None
    preparation_time: Optional[int] = None
    notes: Optional[str] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class BookIn(BaseModel):
    slot_id: int
    student_notes: str = ""


class BookingUpdateIn(BaseModel):
    """Officer edit of free-text fields and raw status."""
    booking_status: Optional[BookingStatus] = None
    cancellation_reason: Optional[str] = None
    student_notes: Optional[str] = None
    officer_notes: Optional[str] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, mode="json")


class CancelIn(BaseModel):
    cancellation_reason: str = ""


class RescheduleIn(BaseModel):
    new_slot_id: int
    reason: str = ""


class Page(BaseModel):
    """Requested page of a listing."""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total_items: int) -> dict:
        return {
            "current_page": self.page,
            "total_pages": ceil(total_items / self.limit) if total_items else 0,
            "total_items": total_items,
            "items_per_page": self.limit,
        }
