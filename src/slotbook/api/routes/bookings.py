"""Booking endpoints - create, list, read and lifecycle transitions.

Transitions driven by external collaborators:
- /confirm, /payment-failed: payment gateway callbacks
- /complete: post-stay scheduler
- /no-show: front desk / check-in system
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Path, Query

from slotbook.api.dependencies import Identity, get_core, get_identity, http_error
from slotbook.api.dto import (
    BookingListOut,
    BookingOut,
    CancelBookingRequest,
    ConfirmPaymentRequest,
    CreateBookingRequest,
    PaymentFailedRequest,
)
from slotbook.bootstrap import ReservationCore
from slotbook.domain.errors import SlotbookError, ValidationError
from slotbook.domain.models import BookingFilters, BookingStatus, DateRange, PaymentStatus
from slotbook.observability.logging import get_logger
from slotbook.observability.redaction import safe_log_context

router = APIRouter(prefix="/bookings", tags=["bookings"])

logger = get_logger(__name__)


@router.post("", status_code=201, response_model=BookingOut)
def create_booking(
    body: CreateBookingRequest,
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> BookingOut:
    """Reserve capacity and create a booking.

    Returns 409 with the first unavailable date when overbooked. A replay
    with the same Idempotency-Key returns the original booking.
    """
    try:
        booking = core.ledger.create(
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            listing_id=body.listing_id,
            date_range=body.date_range(),
            guest_count=body.guest_count,
            guest_details=body.guest_details.to_domain(),
            special_requests=body.special_requests,
            payment_method_ref=body.payment_method_ref,
            promo_code=body.promo_code,
            idempotency_key=idempotency_key,
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc

    return BookingOut.from_domain(booking)


@router.get("", response_model=BookingListOut)
def list_bookings(
    status: list[BookingStatus] | None = Query(None),
    payment_status: list[PaymentStatus] | None = Query(None, alias="paymentStatus"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    listing_id: str | None = Query(None, alias="listingId"),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    limit: int = Query(20),
    offset: int = Query(0),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingListOut:
    """List the caller's bookings.

    startDate/endDate (given together, endDate exclusive) keep bookings
    whose stay overlaps that range.
    """
    try:
        if (start_date is None) != (end_date is None):
            raise ValidationError("date_range", "startDate and endDate must be given together")
        filters = BookingFilters(
            statuses=frozenset(status or ()),
            payment_statuses=frozenset(payment_status or ()),
            date_range=DateRange(start_date, end_date) if start_date and end_date else None,
            listing_id=listing_id,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        page = core.ledger.list_bookings(
            tenant_id=identity.tenant_id, user_id=identity.user_id, filters=filters
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingListOut.from_domain(page, filters)


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    try:
        booking = core.ledger.get(booking_id, tenant_id=identity.tenant_id)
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingOut.from_domain(booking)


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    body: CancelBookingRequest,
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    """Cancel a pending or confirmed booking and release its capacity.

    A second cancel of the same booking returns 409 and releases nothing.
    """
    try:
        booking = core.ledger.cancel(
            booking_id,
            tenant_id=identity.tenant_id,
            reason=body.reason,
            actor=identity.user_id,
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc

    logger.info(
        "booking cancelled via api",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking_id, refund_cents=booking.refund_cents
            )
        },
    )
    return BookingOut.from_domain(booking)


@router.post("/{booking_id}/confirm", response_model=BookingOut)
def confirm_booking(
    body: ConfirmPaymentRequest,
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    """Payment succeeded: pending -> confirmed."""
    try:
        booking = core.ledger.confirm_payment(
            booking_id, tenant_id=identity.tenant_id, payment_ref=body.payment_ref
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingOut.from_domain(booking)


@router.post("/{booking_id}/payment-failed", response_model=BookingOut)
def payment_failed(
    body: PaymentFailedRequest,
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    """Payment failed or timed out: pending -> cancelled, capacity released."""
    try:
        booking = core.ledger.fail_payment(
            booking_id, tenant_id=identity.tenant_id, reason=body.reason
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingOut.from_domain(booking)


@router.post("/{booking_id}/complete", response_model=BookingOut)
def complete_booking(
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    try:
        booking = core.ledger.complete(booking_id, tenant_id=identity.tenant_id)
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingOut.from_domain(booking)


@router.post("/{booking_id}/no-show", response_model=BookingOut)
def mark_no_show(
    booking_id: str = Path(..., description="Booking UUID"),
    identity: Identity = Depends(get_identity),
    core: ReservationCore = Depends(get_core),
) -> BookingOut:
    try:
        booking = core.ledger.mark_no_show(booking_id, tenant_id=identity.tenant_id)
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return BookingOut.from_domain(booking)
