"""Request/response schemas and their mapping to domain types.

Wire names are camelCase; Python attributes and domain types are
snake_case. Conversion happens here and nowhere else.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from slotbook.domain.models import (
    Booking,
    BookingFilters,
    BookingPage,
    DateRange,
    DayStatus,
    GuestContact,
    GuestDetails,
    PricingQuote,
)


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Request schemas ──────────────────────────────────────


class StayRequest(_Request):
    listing_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    guest_count: int

    def date_range(self) -> DateRange:
        """Raises ValidationError when start >= end."""
        return DateRange(self.start_date, self.end_date)


class PricingRequest(StayRequest):
    promo_code: str | None = None


class GuestContactIn(_Request):
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=40)

    def to_domain(self) -> GuestContact:
        return GuestContact(name=self.name, email=self.email, phone=self.phone)


class GuestDetailsIn(_Request):
    primary: GuestContactIn
    guests: list[GuestContactIn] = Field(default_factory=list)

    def to_domain(self) -> GuestDetails:
        return GuestDetails(
            primary=self.primary.to_domain(),
            guests=tuple(g.to_domain() for g in self.guests),
        )


class CreateBookingRequest(StayRequest):
    guest_details: GuestDetailsIn
    special_requests: str | None = Field(default=None, max_length=2000)
    payment_method_ref: str | None = Field(default=None, max_length=200)
    promo_code: str | None = None


class CancelBookingRequest(_Request):
    reason: str = Field(..., min_length=1, max_length=500)


class ConfirmPaymentRequest(_Request):
    payment_ref: str | None = Field(default=None, max_length=200)


class PaymentFailedRequest(_Request):
    reason: str = Field(default="payment_failed", min_length=1, max_length=500)


# ── Response schemas ─────────────────────────────────────


class DayStatusOut(_Response):
    date: date
    status: str
    price_cents: int | None
    remaining: int

    @classmethod
    def from_domain(cls, day: DayStatus) -> DayStatusOut:
        return cls(
            date=day.date,
            status=day.status.value,
            price_cents=day.price_cents,
            remaining=day.remaining,
        )


class QuoteOut(_Response):
    base_price_cents: int
    nights: int
    nightly_cents: list[int]
    subtotal_cents: int
    service_fee_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    promo_code: str | None = None

    @classmethod
    def from_domain(cls, quote: PricingQuote) -> QuoteOut:
        return cls(
            base_price_cents=quote.base_price_cents,
            nights=quote.nights,
            nightly_cents=list(quote.nightly_cents),
            subtotal_cents=quote.subtotal_cents,
            service_fee_cents=quote.service_fee_cents,
            tax_cents=quote.tax_cents,
            discount_cents=quote.discount_cents,
            total_cents=quote.total_cents,
            currency=quote.currency,
            promo_code=quote.promo_code,
        )


class GuestContactOut(_Response):
    name: str
    email: str | None = None
    phone: str | None = None


class GuestDetailsOut(_Response):
    primary: GuestContactOut
    guests: list[GuestContactOut]


class BookingOut(_Response):
    id: str
    tenant_id: str
    listing_id: str
    user_id: str
    start_date: date
    end_date: date
    guest_count: int
    guest_details: GuestDetailsOut
    pricing: QuoteOut
    currency: str
    status: str
    payment_status: str
    confirmation_code: str
    special_requests: str | None = None
    payment_method_ref: str | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    refund_cents: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, booking: Booking) -> BookingOut:
        details = booking.guest_details

        def contact(c: GuestContact) -> GuestContactOut:
            return GuestContactOut(name=c.name, email=c.email, phone=c.phone)

        return cls(
            id=booking.id,
            tenant_id=booking.tenant_id,
            listing_id=booking.listing_id,
            user_id=booking.user_id,
            start_date=booking.date_range.start,
            end_date=booking.date_range.end,
            guest_count=booking.guest_count,
            guest_details=GuestDetailsOut(
                primary=contact(details.primary),
                guests=[contact(g) for g in details.guests],
            ),
            pricing=QuoteOut.from_domain(booking.quote),
            currency=booking.currency,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            confirmation_code=booking.confirmation_code,
            special_requests=booking.special_requests,
            payment_method_ref=booking.payment_method_ref,
            paid_at=booking.paid_at,
            cancelled_at=booking.cancelled_at,
            cancelled_by=booking.cancelled_by,
            cancellation_reason=booking.cancellation_reason,
            refund_cents=booking.refund_cents,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class BookingListOut(_Response):
    bookings: list[BookingOut]
    total: int
    limit: int
    offset: int

    @classmethod
    def from_domain(cls, page: BookingPage, filters: BookingFilters) -> BookingListOut:
        return cls(
            bookings=[BookingOut.from_domain(b) for b in page.bookings],
            total=page.total,
            limit=filters.limit,
            offset=filters.offset,
        )
