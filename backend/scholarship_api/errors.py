"""Domain exceptions for interview scheduling.

Every error carries a stable machine-checkable `kind` and the HTTP status
the API layer renders it with. Services raise these before mutating
anything; inside a unit of work the session is rolled back first.
"""


class SchedulingError(Exception):
    """Base exception for all interview scheduling errors."""
    kind = "scheduling_error"
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self.args[0])


class InvalidInput(SchedulingError):
    """Malformed or missing request data."""
    kind = "invalid_input"


class InvalidFormat(InvalidInput):
    """Date or time string could not be parsed."""
    kind = "invalid_format"


class InvalidOrder(InvalidInput):
    """End time must be after start time."""
    kind = "invalid_order"


class PastDate(InvalidInput):
    """Interview date is in the past."""
    kind = "past_date"


class NotFound(SchedulingError):
    """Requested record does not exist."""
    kind = "not_found"
    status_code = 404


class Forbidden(SchedulingError):
    """Caller may not access this record."""
    kind = "forbidden"
    status_code = 403


class SlotConflict(SchedulingError):
    """Interviewer already has an overlapping slot on this date."""
    kind = "slot_conflict"
    status_code = 409


class SlotNotBookable(SchedulingError):
    """Slot is unavailable or already at capacity."""
    kind = "slot_not_bookable"


class DuplicateBooking(SchedulingError):
    """Application already has an active interview booking."""
    kind = "duplicate_booking"


class NoEligibleApplication(SchedulingError):
    """No submitted, under-review or approved application for this scholarship."""
    kind = "no_eligible_application"


class CapacityBelowBookings(SchedulingError):
    """Capacity cannot be lower than the current number of bookings."""
    kind = "capacity_below_bookings"


class CannotDisableBookedSlot(SchedulingError):
    """Slot with bookings cannot be made unavailable."""
    kind = "cannot_disable_booked_slot"


class SlotHasBookings(SchedulingError):
    """Slot with bookings cannot be deleted."""
    kind = "slot_has_bookings"


class AlreadyConfirmed(SchedulingError):
    """Booking is already confirmed."""
    kind = "already_confirmed"


class AlreadyCancelled(SchedulingError):
    """Booking is already cancelled."""
    kind = "already_cancelled"


class BookingCompleted(SchedulingError):
    """Booking is completed and can no longer change."""
    kind = "booking_completed"


class AlreadyCheckedIn(SchedulingError):
    """Booking is already checked in."""
    kind = "already_checked_in"


class AlreadyCheckedOut(SchedulingError):
    """Booking is already checked out."""
    kind = "already_checked_out"


class CheckInRequired(SchedulingError):
    """Booking must be checked in before check-out."""
    kind = "check_in_required"


class StorageFailure(SchedulingError):
    """Database transaction failed and was rolled back."""
    kind = "storage_failure"
    status_code = 500
