"""Booking ledger - transactional booking lifecycle.

Creation reserves slot capacity and persists the booking in one unit of
work: either both happen or neither does. Every later transition locks
the booking row first, so exactly one concurrent caller can observe a
given status and win the transition; capacity is released only on the
winning transition into ``cancelled``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from slotbook.domain.cancellation import CancellationProcessor
from slotbook.domain.confirmation import generate_confirmation_code
from slotbook.domain.errors import NotFound, Overbooked, ValidationError
from slotbook.domain.models import (
    Booking,
    BookingFilters,
    BookingPage,
    BookingStatus,
    CancellationRecord,
    DateRange,
    GuestDetails,
    PaymentStatus,
)
from slotbook.domain.ports import ListingCatalog, UnitOfWorkFactory
from slotbook.domain.pricing import PricingEngine, validate_guest_count
from slotbook.domain.state_machine import BookingEvent, next_status
from slotbook.infra.retry import retry_storage
from slotbook.infra.time import utc_now
from slotbook.observability.correlation import get_correlation_id
from slotbook.observability.logging import get_logger
from slotbook.observability.redaction import safe_log_context

logger = get_logger(__name__)

_EVENT_TYPES = {
    BookingStatus.CONFIRMED: "BOOKING_CONFIRMED",
    BookingStatus.CANCELLED: "BOOKING_CANCELLED",
    BookingStatus.COMPLETED: "BOOKING_COMPLETED",
    BookingStatus.NO_SHOW: "BOOKING_NO_SHOW",
}

# Change function: (locked booking, target status, now) -> (updated booking, event payload)
_Change = Callable[[Booking, BookingStatus, datetime], tuple[Booking, dict[str, Any]]]


def _event_payload(booking: Booking) -> dict[str, Any]:
    """Outbox payload without guest PII."""
    return {
        "listing_id": booking.listing_id,
        "user_id": booking.user_id,
        "start_date": booking.date_range.start.isoformat(),
        "end_date": booking.date_range.end.isoformat(),
        "nights": booking.quote.nights,
        "guest_count": booking.guest_count,
        "total_cents": booking.total_cents,
        "currency": booking.currency,
        "status": booking.status.value,
        "payment_status": booking.payment_status.value,
        "confirmation_code": booking.confirmation_code,
    }


class BookingLedger:
    def __init__(
        self,
        *,
        catalog: ListingCatalog,
        unit_of_work: UnitOfWorkFactory,
        pricing: PricingEngine,
        cancellation: CancellationProcessor,
        clock: Callable[[], datetime] = utc_now,
        reservation_units: int = 1,
        confirmation_code_length: int = 8,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self._catalog = catalog
        self._unit_of_work = unit_of_work
        self._pricing = pricing
        self._cancellation = cancellation
        self._clock = clock
        self._units = reservation_units
        self._code_length = confirmation_code_length
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay

    def _retrying(self, fn: Callable[[], Any]) -> Any:
        return retry_storage(
            fn, attempts=self._retry_attempts, base_delay=self._retry_base_delay
        )

    # ── Creation ──────────────────────────────────────────

    def create(
        self,
        *,
        tenant_id: str,
        user_id: str,
        listing_id: str,
        date_range: DateRange,
        guest_count: int,
        guest_details: GuestDetails,
        special_requests: str | None = None,
        payment_method_ref: str | None = None,
        promo_code: str | None = None,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> Booking:
        """Reserve capacity for *date_range* and persist a new booking.

        This function:
        1. Validates guest count, date range and blocked dates against the
           listing policy
        2. Prices the stay (the quote is snapshotted onto the booking)
        3. Reserves one unit of capacity on every night (all-or-nothing)
        4. Persists the booking with a fresh confirmation code and emits
           BOOKING_CREATED (and BOOKING_CONFIRMED for synchronous payment)

        A replay with the same idempotency key returns the existing booking
        without reserving again.

        Raises:
            NotFound: Unknown listing (or listing of another tenant).
            ValidationError: Input violates the listing policy.
            Overbooked: A night has no remaining capacity; nothing is persisted.
            StorageError: Persistence still failing after bounded retries.
        """
        correlation_id = correlation_id or get_correlation_id() or None
        now = self._clock()

        policy = self._catalog.get_policy(listing_id)
        if policy.tenant_id != tenant_id:
            raise NotFound("listing", listing_id)
        validate_guest_count(policy, guest_count)
        if date_range.start < now.date():
            raise ValidationError(
                "date_range", "start date is in the past", {"start": date_range.start.isoformat()}
            )
        blocked = sorted(d for d in date_range.dates() if d in policy.blocked_dates)
        if blocked:
            raise Overbooked(listing_id, blocked[0])

        synchronous = policy.payment_mode == "sync"

        def _attempt() -> tuple[Booking, bool]:
            with self._unit_of_work() as uow:
                if idempotency_key:
                    existing = uow.bookings.find_by_idempotency_key(
                        tenant_id, listing_id, idempotency_key
                    )
                    if existing is not None:
                        return existing, False

                slots = uow.slots.get_slots(listing_id, date_range)
                quote = self._pricing.calculate_pricing(
                    listing_id, date_range, guest_count, promo_code, slots=slots
                )

                uow.slots.reserve(listing_id, date_range, self._units)

                code = generate_confirmation_code(
                    uow.bookings.confirmation_code_exists, length=self._code_length
                )
                booking = Booking(
                    id=str(uuid4()),
                    tenant_id=tenant_id,
                    listing_id=listing_id,
                    user_id=user_id,
                    date_range=date_range,
                    guest_count=guest_count,
                    guest_details=guest_details,
                    quote=quote,
                    status=BookingStatus.CONFIRMED if synchronous else BookingStatus.PENDING,
                    payment_status=PaymentStatus.PAID if synchronous else PaymentStatus.PENDING,
                    paid_at=now if synchronous else None,
                    confirmation_code=code,
                    created_at=now,
                    updated_at=now,
                    reservation_units=self._units,
                    special_requests=special_requests,
                    payment_method_ref=payment_method_ref,
                    idempotency_key=idempotency_key,
                )
                uow.bookings.insert(booking)

                uow.outbox.emit(
                    tenant_id=tenant_id,
                    event_type="BOOKING_CREATED",
                    aggregate_id=booking.id,
                    payload=_event_payload(booking),
                    correlation_id=correlation_id,
                )
                if synchronous:
                    uow.outbox.emit(
                        tenant_id=tenant_id,
                        event_type="BOOKING_CONFIRMED",
                        aggregate_id=booking.id,
                        payload=_event_payload(booking),
                        correlation_id=correlation_id,
                    )
                return booking, True

        try:
            booking, created = self._retrying(_attempt)
        except Overbooked as exc:
            logger.info(
                "booking rejected, overbooked",
                extra={
                    "extra_fields": safe_log_context(
                        listing_id=listing_id, date=exc.date
                    )
                },
            )
            raise

        logger.info(
            "booking created" if created else "booking create replayed",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id,
                    listing_id=listing_id,
                    tenant_id=tenant_id,
                    nights=booking.quote.nights,
                    total_cents=booking.total_cents,
                    status=booking.status.value,
                )
            },
        )
        return booking

    # ── Reads ─────────────────────────────────────────────

    def get(self, booking_id: str, *, tenant_id: str) -> Booking:
        with self._unit_of_work() as uow:
            booking = uow.bookings.get(booking_id)
        if booking is None or booking.tenant_id != tenant_id:
            raise NotFound("booking", booking_id)
        return booking

    def list_bookings(
        self,
        *,
        tenant_id: str,
        user_id: str,
        filters: BookingFilters | None = None,
    ) -> BookingPage:
        """The user's bookings in *tenant_id*, filtered, sorted and paged."""
        with self._unit_of_work() as uow:
            return uow.bookings.list_for_user(tenant_id, user_id, filters or BookingFilters())

    # ── Transitions ───────────────────────────────────────

    def _transition(
        self,
        booking_id: str,
        tenant_id: str,
        event: BookingEvent,
        change: _Change,
        correlation_id: str | None,
    ) -> Booking:
        """Lock the booking, validate *event*, apply *change*, emit the event.

        Capacity is released inside the same unit of work when the target
        status is ``cancelled``.
        """
        correlation_id = correlation_id or get_correlation_id() or None

        def _attempt() -> Booking:
            with self._unit_of_work() as uow:
                current = uow.bookings.get_for_update(booking_id)
                if current is None or current.tenant_id != tenant_id:
                    raise NotFound("booking", booking_id)

                target = next_status(booking_id, current.status, event)
                now = self._clock()
                updated, extra = change(current, target, now)

                if target == BookingStatus.CANCELLED:
                    uow.slots.release(
                        current.listing_id, current.date_range, current.reservation_units
                    )

                uow.bookings.update(updated)
                uow.outbox.emit(
                    tenant_id=tenant_id,
                    event_type=_EVENT_TYPES[target],
                    aggregate_id=booking_id,
                    payload={**_event_payload(updated), **extra},
                    correlation_id=correlation_id,
                )
                return updated

        booking = self._retrying(_attempt)
        logger.info(
            "booking transitioned",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking_id, event=event.value, status=booking.status.value
                )
            },
        )
        return booking

    def confirm_payment(
        self,
        booking_id: str,
        *,
        tenant_id: str,
        payment_ref: str | None = None,
        correlation_id: str | None = None,
    ) -> Booking:
        """pending -> confirmed on the payment collaborator's success signal."""

        def change(b: Booking, target: BookingStatus, now: datetime):
            updated = replace(
                b,
                status=target,
                payment_status=PaymentStatus.PAID,
                payment_ref=payment_ref,
                paid_at=now,
                updated_at=now,
            )
            return updated, {}

        return self._transition(
            booking_id, tenant_id, BookingEvent.PAYMENT_SUCCEEDED, change, correlation_id
        )

    def fail_payment(
        self,
        booking_id: str,
        *,
        tenant_id: str,
        reason: str = "payment_failed",
        correlation_id: str | None = None,
    ) -> Booking:
        """pending -> cancelled on payment failure or timeout. Releases capacity."""

        def change(b: Booking, target: BookingStatus, now: datetime):
            updated = replace(
                b,
                status=target,
                payment_status=PaymentStatus.FAILED,
                cancelled_at=now,
                cancelled_by="payment_gateway",
                cancellation_reason=reason,
                refund_cents=0,
                updated_at=now,
            )
            record = CancellationRecord(b.id, reason, 0, now)
            return updated, _record_payload(record)

        return self._transition(
            booking_id, tenant_id, BookingEvent.PAYMENT_FAILED, change, correlation_id
        )

    def cancel(
        self,
        booking_id: str,
        *,
        tenant_id: str,
        reason: str,
        actor: str,
        correlation_id: str | None = None,
    ) -> Booking:
        """Cancel a pending or confirmed booking, computing its refund.

        Raises:
            NotFound: Unknown booking (or booking of another tenant).
            InvalidStateTransition: Booking already cancelled, completed or
                no-show. No capacity is released in that case.
        """

        def change(b: Booking, target: BookingStatus, now: datetime):
            decision = self._cancellation.compute_refund(b, now)
            payment_status = b.payment_status
            if decision.refund_cents > 0 and b.payment_status == PaymentStatus.PAID:
                payment_status = PaymentStatus.REFUNDED
            updated = replace(
                b,
                status=target,
                payment_status=payment_status,
                cancelled_at=now,
                cancelled_by=actor,
                cancellation_reason=reason,
                refund_cents=decision.refund_cents,
                updated_at=now,
            )
            record = CancellationRecord(
                b.id, reason, decision.refund_cents, now, decision.anomaly
            )
            return updated, {**_record_payload(record), "refund_rule": decision.rule}

        return self._transition(booking_id, tenant_id, BookingEvent.CANCEL, change, correlation_id)

    def complete(
        self, booking_id: str, *, tenant_id: str, correlation_id: str | None = None
    ) -> Booking:
        """confirmed -> completed. Scheduling this after the stay is external."""
        return self._transition(
            booking_id, tenant_id, BookingEvent.COMPLETE, _status_only, correlation_id
        )

    def mark_no_show(
        self, booking_id: str, *, tenant_id: str, correlation_id: str | None = None
    ) -> Booking:
        """confirmed -> no_show when check-in did not happen."""
        return self._transition(
            booking_id, tenant_id, BookingEvent.NO_SHOW, _status_only, correlation_id
        )


def _status_only(b: Booking, target: BookingStatus, now: datetime):
    return replace(b, status=target, updated_at=now), {}


def _record_payload(record: CancellationRecord) -> dict[str, Any]:
    return {
        "reason": record.reason,
        "refund_cents": record.refund_cents,
        "processed_at": record.processed_at.isoformat(),
        "refund_anomaly": record.anomaly,
    }
