"""In-process storage: slot counters, bookings and outbox behind a unit of work.

Used for single-process deployments, local development and tests. The
slot store serializes on a fixed set of striped locks keyed by
(listing, date); a range takes its stripes in ascending stripe order, so
overlapping ranges cannot deadlock and the lock set never grows.

A unit of work keeps an undo journal and holds the stripes of every
range it touched until it ends: on any exception, reservations,
releases, inserts and updates made through it are reverted in reverse
order before other writers can see the slots, and buffered outbox events
are dropped.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Callable, Iterator

from slotbook.domain.errors import Overbooked, StorageError
from slotbook.domain.models import Booking, BookingFilters, BookingPage, DateRange, Slot
from slotbook.infra.time import utc_now

SlotKey = tuple[str, date]

LOCK_STRIPES = 64


class InMemorySlotStore:
    def __init__(self, stripes: int = LOCK_STRIPES) -> None:
        self._slots: dict[SlotKey, Slot] = {}
        self._stripes = tuple(threading.RLock() for _ in range(stripes))

    def _stripes_for(self, keys: list[SlotKey]) -> list[threading.RLock]:
        indexes = sorted({hash(key) % len(self._stripes) for key in keys})
        return [self._stripes[i] for i in indexes]

    @contextmanager
    def locked(self, listing_id: str, date_range: DateRange) -> Iterator[list[SlotKey]]:
        """Hold the stripes covering every date of *date_range*."""
        keys = [(listing_id, d) for d in date_range.dates()]
        with ExitStack() as stack:
            for lock in self._stripes_for(keys):
                stack.enter_context(lock)
            yield keys

    def put_slot(self, slot: Slot) -> None:
        """Create or replace a slot (capacity configuration, not a reservation)."""
        key = (slot.listing_id, slot.date)
        with self._stripes_for([key])[0]:
            self._slots[key] = slot

    def get_slots(self, listing_id: str, date_range: DateRange) -> list[Slot]:
        with self.locked(listing_id, date_range) as keys:
            return [self._slots.get(k) or Slot(listing_id, k[1], capacity=0) for k in keys]

    def reserve(self, listing_id: str, date_range: DateRange, units: int) -> None:
        if units < 1:
            raise ValueError("units must be >= 1")
        with self.locked(listing_id, date_range) as keys:
            current = [self._slots.get(k) for k in keys]
            for key, slot in zip(keys, current):
                if slot is None or slot.blocked or slot.reserved + units > slot.capacity:
                    raise Overbooked(listing_id, key[1])
            for key, slot in zip(keys, current):
                self._slots[key] = replace(slot, reserved=slot.reserved + units)

    def release(self, listing_id: str, date_range: DateRange, units: int) -> dict[date, int]:
        """Decrement reserved by *units* per date, floored at 0.

        Returns:
            Units actually released per date.
        """
        if units < 1:
            raise ValueError("units must be >= 1")
        released: dict[date, int] = {}
        with self.locked(listing_id, date_range) as keys:
            for key in keys:
                slot = self._slots.get(key)
                if slot is None:
                    continue
                taken = min(units, slot.reserved)
                self._slots[key] = replace(slot, reserved=slot.reserved - taken)
                released[key[1]] = taken
        return released

    def restore(self, listing_id: str, released: dict[date, int]) -> None:
        """Undo a release. The caller still holds the range's stripes."""
        for day, units in sorted(released.items()):
            key = (listing_id, day)
            with self._stripes_for([key])[0]:
                slot = self._slots.get(key)
                if slot is not None:
                    self._slots[key] = replace(slot, reserved=slot.reserved + units)


class InMemoryBookingRepository:
    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        self._codes: set[str] = set()
        self._idempotency: dict[tuple[str, str, str], str] = {}
        self._lock = threading.Lock()
        self._row_locks: dict[str, threading.Lock] = {}

    def row_lock(self, booking_id: str) -> threading.Lock:
        with self._lock:
            lock = self._row_locks.get(booking_id)
            if lock is None:
                lock = self._row_locks[booking_id] = threading.Lock()
            return lock

    def insert(self, booking: Booking) -> None:
        with self._lock:
            if booking.id in self._bookings or booking.confirmation_code in self._codes:
                raise StorageError("duplicate booking id or confirmation code")
            if booking.idempotency_key:
                key = (booking.tenant_id, booking.listing_id, booking.idempotency_key)
                if key in self._idempotency:
                    # Concurrent create with the same key; a retry will find it.
                    raise StorageError("idempotency key already used")
                self._idempotency[key] = booking.id
            self._bookings[booking.id] = booking
            self._codes.add(booking.confirmation_code)

    def delete(self, booking: Booking) -> None:
        with self._lock:
            self._bookings.pop(booking.id, None)
            self._codes.discard(booking.confirmation_code)
            if booking.idempotency_key:
                self._idempotency.pop(
                    (booking.tenant_id, booking.listing_id, booking.idempotency_key), None
                )

    def get(self, booking_id: str) -> Booking | None:
        with self._lock:
            return self._bookings.get(booking_id)

    def put(self, booking: Booking) -> None:
        with self._lock:
            self._bookings[booking.id] = booking

    def confirmation_code_exists(self, code: str) -> bool:
        with self._lock:
            return code in self._codes

    def find_by_idempotency_key(
        self, tenant_id: str, listing_id: str, idempotency_key: str
    ) -> Booking | None:
        with self._lock:
            booking_id = self._idempotency.get((tenant_id, listing_id, idempotency_key))
            return self._bookings.get(booking_id) if booking_id else None

    def list_for_user(
        self, tenant_id: str, user_id: str, filters: BookingFilters
    ) -> BookingPage:
        with self._lock:
            matching = [
                b
                for b in self._bookings.values()
                if b.tenant_id == tenant_id and b.user_id == user_id and filters.matches(b)
            ]
        matching.sort(
            key=lambda b: (filters.sort_value(b), b.id),
            reverse=filters.sort_order == "desc",
        )
        page = matching[filters.offset : filters.offset + filters.limit]
        return BookingPage(bookings=tuple(page), total=len(matching))


@dataclass(frozen=True)
class OutboxEvent:
    tenant_id: str
    event_type: str
    aggregate_id: str
    payload: dict[str, Any]
    correlation_id: str | None
    created_at: datetime


@dataclass
class InMemoryOutbox:
    events: list[OutboxEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def extend(self, events: list[OutboxEvent]) -> None:
        with self._lock:
            self.events.extend(events)

    def of_type(self, event_type: str) -> list[OutboxEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


# ── Unit of work ──────────────────────────────────────────


class _JournaledSlots:
    def __init__(
        self,
        store: InMemorySlotStore,
        journal: list[Callable[[], None]],
        stack: ExitStack,
    ):
        self._store = store
        self._journal = journal
        self._stack = stack
        self._held: set[tuple[str, DateRange]] = set()

    def _hold(self, listing_id: str, date_range: DateRange) -> None:
        if (listing_id, date_range) not in self._held:
            self._stack.enter_context(self._store.locked(listing_id, date_range))
            self._held.add((listing_id, date_range))

    def get_slots(self, listing_id: str, date_range: DateRange) -> list[Slot]:
        self._hold(listing_id, date_range)
        return self._store.get_slots(listing_id, date_range)

    def reserve(self, listing_id: str, date_range: DateRange, units: int) -> None:
        self._hold(listing_id, date_range)
        self._store.reserve(listing_id, date_range, units)
        self._journal.append(lambda: self._store.release(listing_id, date_range, units))

    def release(self, listing_id: str, date_range: DateRange, units: int) -> None:
        self._hold(listing_id, date_range)
        released = self._store.release(listing_id, date_range, units)
        self._journal.append(lambda: self._store.restore(listing_id, released))


class _JournaledBookings:
    def __init__(
        self,
        repo: InMemoryBookingRepository,
        journal: list[Callable[[], None]],
        stack: ExitStack,
    ):
        self._repo = repo
        self._journal = journal
        self._stack = stack
        self._locked: set[str] = set()

    def insert(self, booking: Booking) -> None:
        self._repo.insert(booking)
        self._journal.append(lambda: self._repo.delete(booking))

    def get(self, booking_id: str) -> Booking | None:
        return self._repo.get(booking_id)

    def get_for_update(self, booking_id: str) -> Booking | None:
        if booking_id not in self._locked:
            self._stack.enter_context(self._repo.row_lock(booking_id))
            self._locked.add(booking_id)
        return self._repo.get(booking_id)

    def update(self, booking: Booking) -> None:
        if booking.id not in self._locked:
            raise RuntimeError("update requires get_for_update in the same unit of work")
        previous = self._repo.get(booking.id)
        self._repo.put(booking)
        if previous is not None:
            self._journal.append(lambda: self._repo.put(previous))

    def confirmation_code_exists(self, code: str) -> bool:
        return self._repo.confirmation_code_exists(code)

    def find_by_idempotency_key(
        self, tenant_id: str, listing_id: str, idempotency_key: str
    ) -> Booking | None:
        return self._repo.find_by_idempotency_key(tenant_id, listing_id, idempotency_key)

    def list_for_user(
        self, tenant_id: str, user_id: str, filters: BookingFilters
    ) -> BookingPage:
        return self._repo.list_for_user(tenant_id, user_id, filters)


class _BufferedOutbox:
    def __init__(self) -> None:
        self.pending: list[OutboxEvent] = []

    def emit(
        self,
        *,
        tenant_id: str,
        event_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None:
        self.pending.append(
            OutboxEvent(tenant_id, event_type, aggregate_id, dict(payload), correlation_id, utc_now())
        )


class InMemoryUnitOfWork:
    def __init__(self, db: InMemoryDatabase, stack: ExitStack):
        self._journal: list[Callable[[], None]] = []
        self.slots = _JournaledSlots(db.slots, self._journal, stack)
        self.bookings = _JournaledBookings(db.bookings, self._journal, stack)
        self.outbox = _BufferedOutbox()

    def rollback(self) -> None:
        for undo in reversed(self._journal):
            undo()
        self._journal.clear()
        self.outbox.pending.clear()


class InMemoryDatabase:
    """Shared in-process state; hand ``unit_of_work`` to the ledger."""

    def __init__(self) -> None:
        self.slots = InMemorySlotStore()
        self.bookings = InMemoryBookingRepository()
        self.outbox = InMemoryOutbox()

    @contextmanager
    def unit_of_work(self) -> Iterator[InMemoryUnitOfWork]:
        with ExitStack() as stack:
            uow = InMemoryUnitOfWork(self, stack)
            try:
                yield uow
            except BaseException:
                uow.rollback()
                raise
            self.outbox.extend(uow.outbox.pending)
