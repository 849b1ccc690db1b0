"""Cursor-level tests for the PostgreSQL repositories (no database needed)."""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import psycopg2.errors
import pytest

from slotbook.domain.errors import Overbooked, StorageError
from slotbook.domain.models import (
    Booking,
    BookingFilters,
    BookingStatus,
    DateRange,
    GuestContact,
    GuestDetails,
    PaymentStatus,
    PricingQuote,
)
from slotbook.infra.repositories import bookings_repository, outbox_repository, slots_repository
from slotbook.infra.unit_of_work import PostgresUnitOfWork

LISTING = "listing-1"
RANGE = DateRange(date(2030, 2, 1), date(2030, 2, 4))
NOW = datetime(2030, 1, 10, 12, 0, tzinfo=timezone.utc)


class MockCursor:
    """Records executed SQL; fetchone results are served from a queue."""

    def __init__(self, fetchone_results=None, fetchall_result=None):
        self.executed: list[tuple[str, tuple]] = []
        self._fetchone = list(fetchone_results or [])
        self._fetchall = fetchall_result or []

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self._fetchone.pop(0) if self._fetchone else None

    def fetchall(self):
        return self._fetchall


def _booking() -> Booking:
    return Booking(
        id="7c1f6a52-3b6e-4c55-9d0e-2f1a8b7c9d10",
        tenant_id="t",
        listing_id=LISTING,
        user_id="u",
        date_range=RANGE,
        guest_count=2,
        guest_details=GuestDetails(
            primary=GuestContact(name="Ana", email="ana@example.com"),
            guests=(GuestContact(name="Bia"),),
        ),
        quote=PricingQuote(
            base_price_cents=10000,
            nights=3,
            nightly_cents=(10000, 10000, 10000),
            subtotal_cents=30000,
            service_fee_cents=3000,
            tax_cents=2640,
            discount_cents=0,
            total_cents=35640,
            currency="USD",
        ),
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        confirmation_code="ABCD2345",
        created_at=NOW,
        updated_at=NOW,
        idempotency_key="key-1",
    )


def _row(booking: Booking) -> tuple:
    """Row as returned by SELECT, rebuilt from the INSERT parameters."""
    cur = MockCursor()
    bookings_repository.insert_booking(cur, booking)
    params = cur.executed[0][1]
    return (
        params[:7]
        + (json.loads(params[7]),)
        + params[8:10]
        + (json.loads(params[10]),)
        + params[11:]
    )


class TestSlotsRepository:
    def test_fetch_synthesizes_missing_dates(self):
        cur = MockCursor(fetchall_result=[(date(2030, 2, 2), 2, 1, 15000, False)])
        slots = slots_repository.fetch_slots(cur, listing_id=LISTING, date_range=RANGE)
        assert [s.capacity for s in slots] == [0, 2, 0]
        assert slots[1].reserved == 1
        assert slots[1].base_price_cents == 15000
        assert cur.executed[0][1] == (LISTING, RANGE.start, RANGE.end)

    def test_reserve_range_guards_every_date_in_order(self):
        cur = MockCursor(fetchone_results=[(1,), (1,), (1,)])
        slots_repository.reserve_range(cur, listing_id=LISTING, date_range=RANGE, units=1)
        assert len(cur.executed) == 3
        for (query, params), day in zip(cur.executed, RANGE.dates()):
            assert "reserved + %s <= capacity" in query
            assert "NOT blocked" in query
            assert params == (1, LISTING, day, 1)

    def test_reserve_range_stops_at_first_full_date(self):
        cur = MockCursor(fetchone_results=[(1,), None])
        with pytest.raises(Overbooked) as exc_info:
            slots_repository.reserve_range(cur, listing_id=LISTING, date_range=RANGE, units=1)
        assert exc_info.value.date == date(2030, 2, 2)
        assert len(cur.executed) == 2

    def test_release_floors_at_zero(self):
        cur = MockCursor()
        slots_repository.release_range(cur, listing_id=LISTING, date_range=RANGE, units=1)
        assert len(cur.executed) == 3
        assert all("GREATEST(reserved - %s, 0)" in q for q, _ in cur.executed)


class TestBookingsRepository:
    def test_insert_serializes_guest_details_and_prices(self):
        cur = MockCursor()
        bookings_repository.insert_booking(cur, _booking())
        query, params = cur.executed[0]
        assert "INSERT INTO bookings" in query
        assert query.count("%s") == len(params) == 33
        guest_json = json.loads(params[7])
        assert guest_json["primary"]["name"] == "Ana"
        assert guest_json["guests"] == [{"name": "Bia", "email": None, "phone": None}]
        assert json.loads(params[10]) == [10000, 10000, 10000]

    def test_unique_violation_is_storage_error(self):
        cur = MagicMock()
        cur.execute.side_effect = psycopg2.errors.UniqueViolation("duplicate key")
        with pytest.raises(StorageError):
            bookings_repository.insert_booking(cur, _booking())

    def test_row_round_trip(self):
        booking = _booking()
        assert bookings_repository._row_to_booking(_row(booking)) == booking

    def test_get_for_update_locks_row(self):
        cur = MockCursor()
        assert bookings_repository.get_booking(cur, _booking().id, lock=True) is None
        assert cur.executed[0][0].endswith("FOR UPDATE")

    def test_non_uuid_id_is_not_queried(self):
        cur = MockCursor()
        assert bookings_repository.get_booking(cur, "abc") is None
        assert bookings_repository.get_booking(cur, "abc", lock=True) is None
        assert cur.executed == []

    def test_update_writes_lifecycle_fields(self):
        cur = MockCursor()
        bookings_repository.update_booking(cur, _booking())
        query, params = cur.executed[0]
        assert query.strip().startswith("UPDATE bookings")
        assert params[0] == "pending"
        assert params[-1] == _booking().id


class TestOutboxRepository:
    def test_emit_returns_event_id(self):
        cur = MockCursor(fetchone_results=[(42,)])
        event_id = outbox_repository.emit_event(
            cur,
            tenant_id="t",
            event_type="BOOKING_CREATED",
            aggregate_type="booking",
            aggregate_id="b-1",
            payload={"total_cents": 35640},
            correlation_id="cid",
        )
        assert event_id == 42
        params = cur.executed[0][1]
        assert params[1] == "BOOKING_CREATED"
        assert json.loads(params[4]) == {"total_cents": 35640}


class TestPostgresUnitOfWork:
    def test_adapters_share_cursor(self):
        cur = MockCursor(fetchone_results=[(1,), (1,), (1,), None, (7,)])
        uow = PostgresUnitOfWork(cur)
        uow.slots.reserve(LISTING, RANGE, 1)
        assert uow.bookings.confirmation_code_exists("ABCD2345") is False
        uow.outbox.emit(
            tenant_id="t", event_type="BOOKING_CREATED", aggregate_id="b-1", payload={}
        )
        assert len(cur.executed) == 5
        assert cur.executed[-1][1][2] == "booking"


class TestListBookings:
    def test_filters_become_where_clauses(self):
        booking = _booking()
        cur = MockCursor(fetchone_results=[(1,)], fetchall_result=[_row(booking)])
        filters = BookingFilters(
            statuses=frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
            payment_statuses=frozenset({PaymentStatus.PENDING}),
            listing_id=LISTING,
            date_range=DateRange(date(2030, 2, 3), date(2030, 2, 10)),
            sort_by="start_date",
            sort_order="asc",
            limit=5,
            offset=10,
        )

        page = bookings_repository.list_bookings_for_user(
            cur, tenant_id="t", user_id="u", filters=filters
        )

        assert page.total == 1
        assert page.bookings == (booking,)
        count_query, count_params = cur.executed[0]
        assert count_query.startswith("SELECT COUNT(*) FROM bookings WHERE tenant_id = %s")
        assert count_params == [
            "t",
            "u",
            ["confirmed", "pending"],
            ["pending"],
            LISTING,
            date(2030, 2, 10),
            date(2030, 2, 3),
        ]
        page_query, page_params = cur.executed[1]
        assert "ORDER BY start_date ASC, id ASC" in page_query
        assert page_params[-2:] == [5, 10]

    def test_defaults_sort_newest_first(self):
        cur = MockCursor(fetchone_results=[(0,)])
        page = bookings_repository.list_bookings_for_user(
            cur, tenant_id="t", user_id="u", filters=BookingFilters()
        )
        assert page.total == 0
        assert page.bookings == ()
        assert cur.executed[0][1] == ["t", "u"]
        assert "ORDER BY created_at DESC, id DESC" in cur.executed[1][0]
