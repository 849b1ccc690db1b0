"""PostgreSQL unit of work.

One psycopg2 transaction per unit of work: slot increments, booking rows
and outbox events commit together or not at all (see db.txn).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from psycopg2.extensions import cursor as PgCursor

from slotbook.domain.models import Booking, BookingFilters, BookingPage, DateRange, Slot
from slotbook.infra.db import txn
from slotbook.infra.repositories import bookings_repository, outbox_repository, slots_repository

AGGREGATE_TYPE = "booking"


class PostgresSlotStore:
    def __init__(self, cur: PgCursor):
        self._cur = cur

    def get_slots(self, listing_id: str, date_range: DateRange) -> list[Slot]:
        return slots_repository.fetch_slots(self._cur, listing_id=listing_id, date_range=date_range)

    def reserve(self, listing_id: str, date_range: DateRange, units: int) -> None:
        if units < 1:
            raise ValueError("units must be >= 1")
        slots_repository.reserve_range(
            self._cur, listing_id=listing_id, date_range=date_range, units=units
        )

    def release(self, listing_id: str, date_range: DateRange, units: int) -> None:
        if units < 1:
            raise ValueError("units must be >= 1")
        slots_repository.release_range(
            self._cur, listing_id=listing_id, date_range=date_range, units=units
        )


class PostgresBookingRepository:
    def __init__(self, cur: PgCursor):
        self._cur = cur

    def insert(self, booking: Booking) -> None:
        bookings_repository.insert_booking(self._cur, booking)

    def get(self, booking_id: str) -> Booking | None:
        return bookings_repository.get_booking(self._cur, booking_id)

    def get_for_update(self, booking_id: str) -> Booking | None:
        return bookings_repository.get_booking(self._cur, booking_id, lock=True)

    def update(self, booking: Booking) -> None:
        bookings_repository.update_booking(self._cur, booking)

    def confirmation_code_exists(self, code: str) -> bool:
        return bookings_repository.confirmation_code_exists(self._cur, code)

    def find_by_idempotency_key(
        self, tenant_id: str, listing_id: str, idempotency_key: str
    ) -> Booking | None:
        return bookings_repository.find_by_idempotency_key(
            self._cur,
            tenant_id=tenant_id,
            listing_id=listing_id,
            idempotency_key=idempotency_key,
        )

    def list_for_user(
        self, tenant_id: str, user_id: str, filters: BookingFilters
    ) -> BookingPage:
        return bookings_repository.list_bookings_for_user(
            self._cur, tenant_id=tenant_id, user_id=user_id, filters=filters
        )


class PostgresOutbox:
    def __init__(self, cur: PgCursor):
        self._cur = cur

    def emit(
        self,
        *,
        tenant_id: str,
        event_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None:
        outbox_repository.emit_event(
            self._cur,
            tenant_id=tenant_id,
            event_type=event_type,
            aggregate_type=AGGREGATE_TYPE,
            aggregate_id=aggregate_id,
            payload=payload,
            correlation_id=correlation_id,
        )


class PostgresUnitOfWork:
    def __init__(self, cur: PgCursor):
        self.slots = PostgresSlotStore(cur)
        self.bookings = PostgresBookingRepository(cur)
        self.outbox = PostgresOutbox(cur)


def postgres_unit_of_work_factory(dsn: str | None = None):
    """Build a unit-of-work factory bound to *dsn* (defaults to DATABASE_URL)."""

    @contextmanager
    def unit_of_work() -> Iterator[PostgresUnitOfWork]:
        with txn(dsn=dsn) as cur:
            yield PostgresUnitOfWork(cur)

    return unit_of_work


class PostgresSlotReader:
    """Read-only slot access for pricing and availability, one short txn per call."""

    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def get_slots(self, listing_id: str, date_range: DateRange) -> list[Slot]:
        with txn(dsn=self._dsn) as cur:
            return slots_repository.fetch_slots(cur, listing_id=listing_id, date_range=date_range)

    def put_slot(self, slot: Slot) -> None:
        with txn(dsn=self._dsn) as cur:
            slots_repository.upsert_slot(cur, slot)
