"""Bookings repository - persistence for booking records.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from slotbook.domain.errors import StorageError
from slotbook.domain.models import (
    Booking,
    BookingFilters,
    BookingPage,
    BookingStatus,
    DateRange,
    GuestContact,
    GuestDetails,
    PaymentStatus,
    PricingQuote,
)
from slotbook.infra.db import for_update

_COLUMNS = """
    id, tenant_id, listing_id, user_id, start_date, end_date,
    guest_count, guest_details, base_price_cents, nights, nightly_cents,
    subtotal_cents, service_fee_cents, tax_cents, discount_cents,
    total_cents, currency, promo_code, status, payment_status,
    confirmation_code, reservation_units, special_requests,
    payment_method_ref, payment_ref, paid_at, idempotency_key,
    cancelled_at, cancelled_by, cancellation_reason, refund_cents,
    created_at, updated_at
"""


def _guest_details_json(details: GuestDetails) -> str:
    def contact(c: GuestContact) -> dict[str, Any]:
        return {"name": c.name, "email": c.email, "phone": c.phone}

    return json.dumps(
        {"primary": contact(details.primary), "guests": [contact(g) for g in details.guests]}
    )


def _guest_details_from_json(raw: Any) -> GuestDetails:
    data = json.loads(raw) if isinstance(raw, str) else raw
    return GuestDetails(
        primary=GuestContact(**data["primary"]),
        guests=tuple(GuestContact(**g) for g in data.get("guests", [])),
    )


def _row_to_booking(row: tuple[Any, ...]) -> Booking:
    (
        booking_id, tenant_id, listing_id, user_id, start_date, end_date,
        guest_count, guest_details, base_price_cents, nights, nightly_cents,
        subtotal_cents, service_fee_cents, tax_cents, discount_cents,
        total_cents, currency, promo_code, status, payment_status,
        confirmation_code, reservation_units, special_requests,
        payment_method_ref, payment_ref, paid_at, idempotency_key,
        cancelled_at, cancelled_by, cancellation_reason, refund_cents,
        created_at, updated_at,
    ) = row
    if isinstance(nightly_cents, str):
        nightly_cents = json.loads(nightly_cents)

    return Booking(
        id=str(booking_id),
        tenant_id=tenant_id,
        listing_id=listing_id,
        user_id=user_id,
        date_range=DateRange(start_date, end_date),
        guest_count=guest_count,
        guest_details=_guest_details_from_json(guest_details),
        quote=PricingQuote(
            base_price_cents=base_price_cents,
            nights=nights,
            nightly_cents=tuple(nightly_cents),
            subtotal_cents=subtotal_cents,
            service_fee_cents=service_fee_cents,
            tax_cents=tax_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
            currency=currency,
            promo_code=promo_code,
        ),
        status=BookingStatus(status),
        payment_status=PaymentStatus(payment_status),
        confirmation_code=confirmation_code,
        reservation_units=reservation_units,
        special_requests=special_requests,
        payment_method_ref=payment_method_ref,
        payment_ref=payment_ref,
        paid_at=paid_at,
        idempotency_key=idempotency_key,
        cancelled_at=cancelled_at,
        cancelled_by=cancelled_by,
        cancellation_reason=cancellation_reason,
        refund_cents=refund_cents,
        created_at=created_at,
        updated_at=updated_at,
    )


def insert_booking(cur: PgCursor, booking: Booking) -> None:
    """Insert a new booking.

    Raises:
        StorageError: On a unique violation (confirmation code or
            idempotency key taken concurrently); the retried unit of work
            draws a new code or finds the existing booking.
    """
    q = booking.quote
    try:
        cur.execute(
            f"""
            INSERT INTO bookings ({_COLUMNS})
            VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s::jsonb,
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            """,
            (
                booking.id,
                booking.tenant_id,
                booking.listing_id,
                booking.user_id,
                booking.date_range.start,
                booking.date_range.end,
                booking.guest_count,
                _guest_details_json(booking.guest_details),
                q.base_price_cents,
                q.nights,
                json.dumps(list(q.nightly_cents)),
                q.subtotal_cents,
                q.service_fee_cents,
                q.tax_cents,
                q.discount_cents,
                q.total_cents,
                q.currency,
                q.promo_code,
                booking.status.value,
                booking.payment_status.value,
                booking.confirmation_code,
                booking.reservation_units,
                booking.special_requests,
                booking.payment_method_ref,
                booking.payment_ref,
                booking.paid_at,
                booking.idempotency_key,
                booking.cancelled_at,
                booking.cancelled_by,
                booking.cancellation_reason,
                booking.refund_cents,
                booking.created_at,
                booking.updated_at,
            ),
        )
    except pg_errors.UniqueViolation as exc:
        raise StorageError("booking uniqueness conflict") from exc


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def get_booking(cur: PgCursor, booking_id: str, *, lock: bool = False) -> Booking | None:
    """Fetch a booking by id, optionally locking the row (FOR UPDATE).

    Ids that are not UUIDs cannot exist in the table and return None.
    """
    if not _is_uuid(booking_id):
        return None
    query = f"SELECT {_COLUMNS} FROM bookings WHERE id = %s"
    if lock:
        row = for_update(cur, query, (booking_id,))
    else:
        cur.execute(query, (booking_id,))
        row = cur.fetchone()
    return _row_to_booking(row) if row is not None else None


def update_booking(cur: PgCursor, booking: Booking) -> None:
    """Persist the mutable lifecycle fields of a booking."""
    cur.execute(
        """
        UPDATE bookings
        SET status = %s,
            payment_status = %s,
            payment_ref = %s,
            paid_at = %s,
            cancelled_at = %s,
            cancelled_by = %s,
            cancellation_reason = %s,
            refund_cents = %s,
            updated_at = %s
        WHERE id = %s
        """,
        (
            booking.status.value,
            booking.payment_status.value,
            booking.payment_ref,
            booking.paid_at,
            booking.cancelled_at,
            booking.cancelled_by,
            booking.cancellation_reason,
            booking.refund_cents,
            booking.updated_at,
            booking.id,
        ),
    )


def confirmation_code_exists(cur: PgCursor, code: str) -> bool:
    cur.execute("SELECT 1 FROM bookings WHERE confirmation_code = %s", (code,))
    return cur.fetchone() is not None


def find_by_idempotency_key(
    cur: PgCursor, *, tenant_id: str, listing_id: str, idempotency_key: str
) -> Booking | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM bookings
        WHERE tenant_id = %s AND listing_id = %s AND idempotency_key = %s
        """,
        (tenant_id, listing_id, idempotency_key),
    )
    row = cur.fetchone()
    return _row_to_booking(row) if row is not None else None


def list_bookings_for_user(
    cur: PgCursor, *, tenant_id: str, user_id: str, filters: BookingFilters
) -> BookingPage:
    """One page of a user's bookings plus the total count matching *filters*."""
    clauses = ["tenant_id = %s", "user_id = %s"]
    params: list[Any] = [tenant_id, user_id]
    if filters.statuses:
        clauses.append("status = ANY(%s)")
        params.append(sorted(s.value for s in filters.statuses))
    if filters.payment_statuses:
        clauses.append("payment_status = ANY(%s)")
        params.append(sorted(s.value for s in filters.payment_statuses))
    if filters.listing_id is not None:
        clauses.append("listing_id = %s")
        params.append(filters.listing_id)
    if filters.date_range is not None:
        # Half-open overlap with the requested range
        clauses.append("start_date < %s AND end_date > %s")
        params.extend([filters.date_range.end, filters.date_range.start])
    where = " AND ".join(clauses)

    cur.execute(f"SELECT COUNT(*) FROM bookings WHERE {where}", params)
    total = cur.fetchone()[0]

    # sort_by is validated against BOOKING_SORT_KEYS, which are column names
    direction = "DESC" if filters.sort_order == "desc" else "ASC"
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM bookings
        WHERE {where}
        ORDER BY {filters.sort_by} {direction}, id {direction}
        LIMIT %s OFFSET %s
        """,
        [*params, filters.limit, filters.offset],
    )
    return BookingPage(
        bookings=tuple(_row_to_booking(row) for row in cur.fetchall()),
        total=total,
    )
