"""Storage and collaborator interfaces consumed by the reservation core.

Implementations live in slotbook.infra (in-memory and PostgreSQL).
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Callable, Protocol

from slotbook.domain.models import (
    Booking,
    BookingFilters,
    BookingPage,
    DateRange,
    ListingPolicy,
    Promotion,
    Slot,
)


class SlotStore(Protocol):
    """Per-(listing, date) capacity counters. The only writer of reserved counts."""

    def get_slots(self, listing_id: str, date_range: DateRange) -> list[Slot]:
        """One slot per date, ordered; missing dates synthesized with capacity=0."""
        ...

    def reserve(self, listing_id: str, date_range: DateRange, units: int) -> None:
        """Reserve *units* on every date or none. Raises Overbooked."""
        ...

    def release(self, listing_id: str, date_range: DateRange, units: int) -> None:
        """Give back *units* on every date, floored at 0."""
        ...


class BookingRepository(Protocol):
    def insert(self, booking: Booking) -> None: ...

    def get(self, booking_id: str) -> Booking | None: ...

    def get_for_update(self, booking_id: str) -> Booking | None:
        """Fetch and lock the booking until the unit of work ends."""
        ...

    def update(self, booking: Booking) -> None: ...

    def confirmation_code_exists(self, code: str) -> bool: ...

    def find_by_idempotency_key(
        self, tenant_id: str, listing_id: str, idempotency_key: str
    ) -> Booking | None: ...

    def list_for_user(
        self, tenant_id: str, user_id: str, filters: BookingFilters
    ) -> BookingPage:
        """One page of the user's bookings plus the total matching count."""
        ...


class Outbox(Protocol):
    def emit(
        self,
        *,
        tenant_id: str,
        event_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None: ...


class UnitOfWork(Protocol):
    """One transaction spanning slots, bookings and outbox."""

    slots: SlotStore
    bookings: BookingRepository
    outbox: Outbox


UnitOfWorkFactory = Callable[[], AbstractContextManager[UnitOfWork]]


class ListingCatalog(Protocol):
    """External listing catalog: capacity, pricing and stay policy."""

    def get_policy(self, listing_id: str) -> ListingPolicy:
        """Raises NotFound for unknown listings."""
        ...

    def get_promotion(self, code: str) -> Promotion | None: ...
