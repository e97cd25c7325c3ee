"""Booking status state machine.

Statuses and actions are closed enums; `TRANSITIONS` maps each action to
the statuses it may start from and the status it leads to. Rejections use
the error for the status the booking is currently in, so callers get a
specific reason (already confirmed, already cancelled, ...).

Check-in does not change the status, it only stamps `check_in_time`; it is
listed here so its allowed source statuses live with the others.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from . import errors


class BookingStatus(str, Enum):
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingAction(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    RESCHEDULE = "reschedule"


ACTIVE_STATUSES: FrozenSet[BookingStatus] = frozenset({BookingStatus.BOOKED, BookingStatus.CONFIRMED})

# action -> (allowed source statuses, target status or None when unchanged)
TRANSITIONS: Dict[BookingAction, Tuple[FrozenSet[BookingStatus], Optional[BookingStatus]]] = {
    BookingAction.CONFIRM: (frozenset({BookingStatus.BOOKED}), BookingStatus.CONFIRMED),
    BookingAction.CANCEL: (ACTIVE_STATUSES, BookingStatus.CANCELLED),
    BookingAction.CHECK_IN: (ACTIVE_STATUSES, None),
    BookingAction.CHECK_OUT: (ACTIVE_STATUSES, BookingStatus.COMPLETED),
    BookingAction.RESCHEDULE: (ACTIVE_STATUSES, BookingStatus.BOOKED),
}

_REJECTIONS = {
    BookingStatus.CONFIRMED: errors.AlreadyConfirmed,
    BookingStatus.CANCELLED: errors.AlreadyCancelled,
    BookingStatus.COMPLETED: errors.BookingCompleted,
}


def next_status(current: BookingStatus, action: BookingAction) -> BookingStatus:
    """Return the status after applying `action`, or raise the matching error."""
    current = BookingStatus(current)
    allowed, target = TRANSITIONS[action]
    if current not in allowed:
        error_cls = _REJECTIONS.get(current, errors.InvalidInput)
        raise error_cls(f"cannot {action.value.replace('_', '-')} a booking that is {current.value}")
    return target or current
