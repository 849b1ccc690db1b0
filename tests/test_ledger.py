"""Tests for the booking ledger (in-memory storage)."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from helpers import (
    FIXED_NOW,
    LISTING_ID,
    OTHER_TENANT_ID,
    STAY_START,
    TENANT_ID,
    USER_ID,
    create_booking,
    make_core,
    reserved_counts,
    seed_slots,
    stay,
)
from slotbook.domain.confirmation import ALPHABET, MAX_ATTEMPTS
from slotbook.domain.errors import (
    InvalidStateTransition,
    NotFound,
    Overbooked,
    StorageError,
    ValidationError,
)
from slotbook.domain.models import (
    BookingFilters,
    BookingStatus,
    CancellationPolicy,
    DateRange,
    PaymentStatus,
    Slot,
)
from slotbook.observability.correlation import correlation_scope


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestCreate:
    def test_creates_pending_booking_and_reserves(self, seeded_core):
        booking = create_booking(seeded_core)

        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.tenant_id == TENANT_ID
        assert len(booking.confirmation_code) == 8
        assert set(booking.confirmation_code) <= set(ALPHABET)
        assert booking.quote.total_cents == 35640
        assert booking.created_at == FIXED_NOW
        assert reserved_counts(seeded_core, stay()) == [1, 1, 1]
        assert seeded_core.ledger.get(booking.id, tenant_id=TENANT_ID) == booking

    def test_emits_created_event_without_pii(self, seeded_core):
        with correlation_scope("cid-123"):
            booking = create_booking(seeded_core)

        events = seeded_core.database.outbox.of_type("BOOKING_CREATED")
        assert len(events) == 1
        event = events[0]
        assert event.aggregate_id == booking.id
        assert event.correlation_id == "cid-123"
        assert event.payload["total_cents"] == 35640
        serialized = json.dumps(event.payload)
        assert "Ana" not in serialized
        assert "example.com" not in serialized

    def test_start_today_allowed(self):
        core = make_core()
        today_stay = DateRange(FIXED_NOW.date(), FIXED_NOW.date() + timedelta(days=2))
        seed_slots(core, today_stay)
        assert create_booking(core, today_stay).status == BookingStatus.PENDING

    def test_past_start_rejected(self):
        core = make_core()
        past = DateRange(FIXED_NOW.date() - timedelta(days=1), FIXED_NOW.date() + timedelta(days=1))
        seed_slots(core, past)
        with pytest.raises(ValidationError) as exc_info:
            create_booking(core, past)
        assert exc_info.value.field == "date_range"
        assert reserved_counts(core, past) == [0, 0]

    def test_guest_count_over_limit(self):
        core = make_core(max_guests_per_booking=2)
        seed_slots(core, stay())
        with pytest.raises(ValidationError) as exc_info:
            create_booking(core, guest_count=3)
        assert exc_info.value.field == "guest_count"
        assert reserved_counts(core, stay()) == [0, 0, 0]

    def test_unknown_listing(self, seeded_core):
        with pytest.raises(NotFound):
            create_booking(seeded_core, listing_id="missing")

    def test_listing_of_other_tenant_is_not_found(self, seeded_core):
        with pytest.raises(NotFound):
            create_booking(seeded_core, tenant_id=OTHER_TENANT_ID)
        assert reserved_counts(seeded_core, stay()) == [0, 0, 0]

    def test_blocked_date_is_overbooked(self):
        blocked_day = STAY_START + timedelta(days=1)
        core = make_core(blocked_dates=[blocked_day])
        seed_slots(core, stay())
        with pytest.raises(Overbooked) as exc_info:
            create_booking(core)
        assert exc_info.value.date == blocked_day
        assert reserved_counts(core, stay()) == [0, 0, 0]

    def test_overbooked_persists_nothing(self, core):
        seed_slots(core, stay(), capacity=1)
        full_day = STAY_START + timedelta(days=2)
        core.slots.put_slot(Slot(LISTING_ID, full_day, capacity=1, reserved=1))

        with pytest.raises(Overbooked) as exc_info:
            create_booking(core)

        assert exc_info.value.date == full_day
        assert exc_info.value.meta["date"] == full_day.isoformat()
        assert reserved_counts(core, stay()) == [0, 0, 1]
        assert core.database.outbox.events == []

    def test_minimum_stay_violation(self):
        core = make_core(minimum_stay_nights=5)
        seed_slots(core, stay())
        with pytest.raises(ValidationError):
            create_booking(core)
        assert reserved_counts(core, stay()) == [0, 0, 0]

    def test_quote_is_snapshotted(self, seeded_core):
        booking = create_booking(seeded_core)
        for day in stay().dates():
            seeded_core.slots.put_slot(
                Slot(LISTING_ID, day, capacity=1, reserved=1, base_price_cents=99900)
            )
        assert seeded_core.ledger.get(booking.id, tenant_id=TENANT_ID).quote == booking.quote

    def test_synchronous_payment_creates_confirmed(self):
        core = make_core(payment_mode="sync")
        seed_slots(core, stay())
        booking = create_booking(core)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.paid_at == FIXED_NOW
        types = [e.event_type for e in core.database.outbox.events]
        assert types == ["BOOKING_CREATED", "BOOKING_CONFIRMED"]

    def test_idempotent_replay(self, core):
        seed_slots(core, stay(), capacity=2)
        first = create_booking(core, idempotency_key="key-1")
        second = create_booking(core, idempotency_key="key-1")

        assert second.id == first.id
        assert reserved_counts(core, stay()) == [1, 1, 1]
        assert len(core.database.outbox.of_type("BOOKING_CREATED")) == 1


class TestAtMostOneWinner:
    def test_concurrent_creates_for_last_unit(self, core):
        seed_slots(core, stay(5), capacity=1)
        ranges = [stay(3), stay(2, STAY_START + timedelta(days=1)), stay(4)]
        barrier = threading.Barrier(6)
        results: list[object] = []
        lock = threading.Lock()

        def worker(r):
            barrier.wait()
            try:
                outcome = create_booking(core, r)
            except Overbooked as exc:
                outcome = exc
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(ranges[i % 3],)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if not isinstance(r, Overbooked)]
        assert len(winners) == 1
        assert len(results) == 6
        assert reserved_counts(core, stay(5)) == [
            1 if d in winners[0].date_range else 0 for d in stay(5).dates()
        ]


class TestCancel:
    def test_round_trip_restores_capacity_with_full_refund(self, seeded_core):
        booking = create_booking(seeded_core)
        seeded_core.ledger.confirm_payment(booking.id, tenant_id=TENANT_ID, payment_ref="pi_1")

        cancelled = seeded_core.ledger.cancel(
            booking.id, tenant_id=TENANT_ID, reason="plans changed", actor="user-1"
        )

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.refund_cents == 35640
        assert cancelled.payment_status == PaymentStatus.REFUNDED
        assert cancelled.cancelled_by == "user-1"
        assert cancelled.cancellation_reason == "plans changed"
        assert cancelled.cancelled_at == FIXED_NOW
        assert reserved_counts(seeded_core, stay()) == [0, 0, 0]

    def test_partial_refund_inside_window(self):
        clock = MutableClock(FIXED_NOW)
        core = make_core(clock=clock)
        seed_slots(core, stay())
        booking = create_booking(core)
        core.ledger.confirm_payment(booking.id, tenant_id=TENANT_ID)

        clock.now = datetime(2030, 1, 29, 9, 0, tzinfo=timezone.utc)
        cancelled = core.ledger.cancel(booking.id, tenant_id=TENANT_ID, reason="r", actor="u")

        assert cancelled.refund_cents == 17820
        event = core.database.outbox.of_type("BOOKING_CANCELLED")[0]
        assert event.payload["refund_rule"] == "partial"
        assert event.payload["refund_cents"] == 17820

    def test_non_refundable_keeps_paid_status(self):
        core = make_core(cancellation_policy=CancellationPolicy(policy_type="non_refundable"))
        seed_slots(core, stay())
        booking = create_booking(core)
        core.ledger.confirm_payment(booking.id, tenant_id=TENANT_ID)

        cancelled = core.ledger.cancel(booking.id, tenant_id=TENANT_ID, reason="r", actor="u")

        assert cancelled.refund_cents == 0
        assert cancelled.payment_status == PaymentStatus.PAID
        assert reserved_counts(core, stay()) == [0, 0, 0]

    def test_pending_cancel_refunds_nothing(self, seeded_core):
        booking = create_booking(seeded_core)
        cancelled = seeded_core.ledger.cancel(
            booking.id, tenant_id=TENANT_ID, reason="r", actor="u"
        )
        assert cancelled.refund_cents == 0
        assert cancelled.payment_status == PaymentStatus.PENDING

    def test_second_cancel_is_rejected_and_releases_nothing(self, core):
        seed_slots(core, stay(), capacity=2)
        first = create_booking(core)
        create_booking(core)
        assert reserved_counts(core, stay()) == [2, 2, 2]

        core.ledger.cancel(first.id, tenant_id=TENANT_ID, reason="r", actor="u")
        with pytest.raises(InvalidStateTransition):
            core.ledger.cancel(first.id, tenant_id=TENANT_ID, reason="r", actor="u")

        assert reserved_counts(core, stay()) == [1, 1, 1]
        assert len(core.database.outbox.of_type("BOOKING_CANCELLED")) == 1

    def test_concurrent_cancels_release_once(self, core):
        seed_slots(core, stay(), capacity=3)
        target = create_booking(core)
        create_booking(core)
        barrier = threading.Barrier(5)
        errors: list[Exception] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                core.ledger.cancel(target.id, tenant_id=TENANT_ID, reason="r", actor="u")
            except InvalidStateTransition as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 4
        assert reserved_counts(core, stay()) == [1, 1, 1]

    def test_other_tenant_cannot_cancel(self, seeded_core):
        booking = create_booking(seeded_core)
        with pytest.raises(NotFound):
            seeded_core.ledger.cancel(
                booking.id, tenant_id=OTHER_TENANT_ID, reason="r", actor="u"
            )
        with pytest.raises(NotFound):
            seeded_core.ledger.get(booking.id, tenant_id=OTHER_TENANT_ID)
        assert reserved_counts(seeded_core, stay()) == [1, 1, 1]

    def test_unknown_booking(self, seeded_core):
        with pytest.raises(NotFound):
            seeded_core.ledger.cancel("nope", tenant_id=TENANT_ID, reason="r", actor="u")


class TestPaymentAndLifecycle:
    def test_confirm_payment(self, seeded_core):
        booking = create_booking(seeded_core)
        confirmed = seeded_core.ledger.confirm_payment(
            booking.id, tenant_id=TENANT_ID, payment_ref="pi_123"
        )
        assert confirmed.status == BookingStatus.CONFIRMED
        assert confirmed.payment_status == PaymentStatus.PAID
        assert confirmed.payment_ref == "pi_123"
        assert confirmed.paid_at == FIXED_NOW
        assert len(seeded_core.database.outbox.of_type("BOOKING_CONFIRMED")) == 1

    def test_payment_failure_cancels_and_releases(self, seeded_core):
        booking = create_booking(seeded_core)
        failed = seeded_core.ledger.fail_payment(booking.id, tenant_id=TENANT_ID)
        assert failed.status == BookingStatus.CANCELLED
        assert failed.payment_status == PaymentStatus.FAILED
        assert failed.cancelled_by == "payment_gateway"
        assert failed.refund_cents == 0
        assert reserved_counts(seeded_core, stay()) == [0, 0, 0]

    def test_payment_failure_after_confirmation_rejected(self, seeded_core):
        booking = create_booking(seeded_core)
        seeded_core.ledger.confirm_payment(booking.id, tenant_id=TENANT_ID)
        with pytest.raises(InvalidStateTransition):
            seeded_core.ledger.fail_payment(booking.id, tenant_id=TENANT_ID)
        assert reserved_counts(seeded_core, stay()) == [1, 1, 1]

    def test_complete_keeps_capacity(self, seeded_core):
        booking = create_booking(seeded_core)
        seeded_core.ledger.confirm_payment(booking.id, tenant_id=TENANT_ID)
        completed = seeded_core.ledger.complete(booking.id, tenant_id=TENANT_ID)
        assert completed.status == BookingStatus.COMPLETED
        assert reserved_counts(seeded_core, stay()) == [1, 1, 1]

    def test_no_show_then_nothing_allowed(self, seeded_core):
        ledger = seeded_core.ledger
        booking = create_booking(seeded_core)
        ledger.confirm_payment(booking.id, tenant_id=TENANT_ID)
        no_show = ledger.mark_no_show(booking.id, tenant_id=TENANT_ID)
        assert no_show.status == BookingStatus.NO_SHOW

        attempts = [
            lambda: ledger.confirm_payment(booking.id, tenant_id=TENANT_ID),
            lambda: ledger.fail_payment(booking.id, tenant_id=TENANT_ID),
            lambda: ledger.cancel(booking.id, tenant_id=TENANT_ID, reason="r", actor="u"),
            lambda: ledger.complete(booking.id, tenant_id=TENANT_ID),
            lambda: ledger.mark_no_show(booking.id, tenant_id=TENANT_ID),
        ]
        for attempt in attempts:
            with pytest.raises(InvalidStateTransition):
                attempt()
            assert ledger.get(booking.id, tenant_id=TENANT_ID) == no_show

    def test_pending_cannot_complete(self, seeded_core):
        booking = create_booking(seeded_core)
        with pytest.raises(InvalidStateTransition):
            seeded_core.ledger.complete(booking.id, tenant_id=TENANT_ID)
        with pytest.raises(InvalidStateTransition):
            seeded_core.ledger.mark_no_show(booking.id, tenant_id=TENANT_ID)
        assert seeded_core.ledger.get(booking.id, tenant_id=TENANT_ID) == booking


class TestStorageFailures:
    def test_failed_persistence_rolls_back_reservation(self, seeded_core, monkeypatch):
        calls = []

        def failing_insert(booking):
            calls.append(booking.id)
            raise StorageError()

        monkeypatch.setattr(seeded_core.database.bookings, "insert", failing_insert)

        with pytest.raises(StorageError):
            create_booking(seeded_core)

        assert len(calls) == 3
        assert reserved_counts(seeded_core, stay()) == [0, 0, 0]
        assert seeded_core.database.outbox.events == []

    def test_transient_failure_retried_without_double_reserving(self, seeded_core, monkeypatch):
        repo = seeded_core.database.bookings
        real_insert = repo.insert
        failures = iter([True])

        def flaky_insert(booking):
            if next(failures, False):
                raise StorageError()
            real_insert(booking)

        monkeypatch.setattr(repo, "insert", flaky_insert)

        booking = create_booking(seeded_core)

        assert booking.status == BookingStatus.PENDING
        assert reserved_counts(seeded_core, stay()) == [1, 1, 1]

    def test_validation_errors_not_retried(self, seeded_core, monkeypatch):
        calls = []
        real_get_slots = seeded_core.database.slots.get_slots

        def counting_get_slots(*args):
            calls.append(args)
            return real_get_slots(*args)

        monkeypatch.setattr(seeded_core.database.slots, "get_slots", counting_get_slots)
        with pytest.raises(ValidationError):
            create_booking(seeded_core, promo_code="UNKNOWN")
        assert len(calls) == 1


    def test_exhausted_confirmation_codes_are_retried_then_rolled_back(
        self, seeded_core, monkeypatch
    ):
        calls = []

        def always_taken(code):
            calls.append(code)
            return True

        monkeypatch.setattr(seeded_core.database.bookings, "confirmation_code_exists", always_taken)

        with pytest.raises(StorageError):
            create_booking(seeded_core)

        assert len(calls) == 3 * MAX_ATTEMPTS
        assert reserved_counts(seeded_core, stay()) == [0, 0, 0]


class TestListBookings:
    @pytest.fixture
    def listed_core(self):
        clock = MutableClock(FIXED_NOW)
        core = make_core(clock=clock)
        seed_slots(core, stay(10), capacity=3)
        first = create_booking(core, stay(2))
        clock.now += timedelta(minutes=1)
        second = create_booking(core, stay(3, start=STAY_START + timedelta(days=4)))
        clock.now += timedelta(minutes=1)
        third = create_booking(core, stay(1, start=STAY_START + timedelta(days=8)))
        create_booking(core, stay(2), user_id="someone-else")
        core.ledger.confirm_payment(second.id, tenant_id=TENANT_ID)
        core.ledger.cancel(third.id, tenant_id=TENANT_ID, reason="x", actor=USER_ID)
        return core, (first, second, third)

    def _ids(self, page):
        return [b.id for b in page.bookings]

    def test_lists_only_own_bookings_newest_first(self, listed_core):
        core, (first, second, third) = listed_core
        page = core.ledger.list_bookings(tenant_id=TENANT_ID, user_id=USER_ID)
        assert page.total == 3
        assert self._ids(page) == [third.id, second.id, first.id]

    def test_other_tenant_sees_nothing(self, listed_core):
        core, _ = listed_core
        page = core.ledger.list_bookings(tenant_id=OTHER_TENANT_ID, user_id=USER_ID)
        assert page.total == 0
        assert page.bookings == ()

    def test_status_and_payment_filters(self, listed_core):
        core, (first, second, third) = listed_core
        active = core.ledger.list_bookings(
            tenant_id=TENANT_ID,
            user_id=USER_ID,
            filters=BookingFilters(
                statuses=frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
            ),
        )
        assert sorted(self._ids(active)) == sorted([first.id, second.id])

        paid = core.ledger.list_bookings(
            tenant_id=TENANT_ID,
            user_id=USER_ID,
            filters=BookingFilters(payment_statuses=frozenset({PaymentStatus.PAID})),
        )
        assert self._ids(paid) == [second.id]

    def test_date_range_keeps_overlapping_stays(self, listed_core):
        core, (first, second, third) = listed_core
        # Touches the end of the first stay, overlaps the second
        window = DateRange(STAY_START + timedelta(days=2), STAY_START + timedelta(days=5))
        page = core.ledger.list_bookings(
            tenant_id=TENANT_ID, user_id=USER_ID, filters=BookingFilters(date_range=window)
        )
        assert self._ids(page) == [second.id]

    def test_sort_and_paging(self, listed_core):
        core, (first, second, third) = listed_core
        filters = BookingFilters(sort_by="start_date", sort_order="asc", limit=2, offset=1)
        page = core.ledger.list_bookings(tenant_id=TENANT_ID, user_id=USER_ID, filters=filters)
        assert page.total == 3
        assert self._ids(page) == [second.id, third.id]

    def test_listing_filter(self, listed_core):
        core, _ = listed_core
        page = core.ledger.list_bookings(
            tenant_id=TENANT_ID, user_id=USER_ID, filters=BookingFilters(listing_id="other")
        )
        assert page.total == 0
