"""Booking lifecycle transitions.

pending   --payment_succeeded--> confirmed
pending   --payment_failed-----> cancelled
pending   --cancel-------------> cancelled
confirmed --cancel-------------> cancelled
confirmed --complete-----------> completed
confirmed --no_show------------> no_show

Any other (status, event) pair is rejected.
"""

from __future__ import annotations

from enum import Enum

from slotbook.domain.errors import InvalidStateTransition
from slotbook.domain.models import BookingStatus


class BookingEvent(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    COMPLETE = "complete"
    NO_SHOW = "no_show"


TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.PENDING, BookingEvent.PAYMENT_SUCCEEDED): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING, BookingEvent.PAYMENT_FAILED): BookingStatus.CANCELLED,
    (BookingStatus.PENDING, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.COMPLETE): BookingStatus.COMPLETED,
    (BookingStatus.CONFIRMED, BookingEvent.NO_SHOW): BookingStatus.NO_SHOW,
}


def next_status(booking_id: str, status: BookingStatus, event: BookingEvent) -> BookingStatus:
    """Return the status reached by applying *event*, or raise InvalidStateTransition."""
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidStateTransition(booking_id, status.value, event.value) from None
