"""Shared reservation types.

All monetary values are integer minor units of the booking currency
(``*_cents``). Dates are calendar dates; ranges are half-open
``[start, end)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Literal

from slotbook.domain.errors import ValidationError

# Longest range accepted anywhere: one year of calendar or stay.
MAX_RANGE_DAYS = 366


# ── Enums ─────────────────────────────────────────────────


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DayState(str, Enum):
    UNAVAILABLE = "unavailable"
    BOOKED = "booked"
    PARTIAL = "partial"
    AVAILABLE = "available"


# ── Calendar ──────────────────────────────────────────────


@dataclass(frozen=True)
class DateRange:
    """Half-open range of calendar dates: start inclusive, end exclusive."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise ValidationError("date_range", "start and end must be dates")
        if isinstance(self.start, datetime) or isinstance(self.end, datetime):
            raise ValidationError("date_range", "start and end must not carry a time")
        if self.start >= self.end:
            raise ValidationError(
                "date_range",
                "start date must be before end date",
                {"start": self.start.isoformat(), "end": self.end.isoformat()},
            )
        if (self.end - self.start).days > MAX_RANGE_DAYS:
            raise ValidationError(
                "date_range",
                f"at most {MAX_RANGE_DAYS} days per range",
                {"max_days": MAX_RANGE_DAYS},
            )

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def dates(self) -> Iterator[date]:
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)

    def overlaps(self, other: DateRange) -> bool:
        # Touching ranges (end == other.start) do not overlap.
        return self.start < other.end and other.start < self.end

    def __contains__(self, day: date) -> bool:
        return self.start <= day < self.end


@dataclass(frozen=True)
class Slot:
    """Capacity record for one listing on one date."""

    listing_id: str
    date: date
    capacity: int
    reserved: int = 0
    base_price_cents: int | None = None
    blocked: bool = False

    def __post_init__(self) -> None:
        if self.capacity < 0:
            raise ValueError("capacity must be >= 0")
        if not 0 <= self.reserved <= self.capacity:
            raise ValueError(
                f"reserved={self.reserved} outside [0, {self.capacity}] "
                f"for {self.listing_id}/{self.date}"
            )

    @property
    def remaining(self) -> int:
        if self.blocked:
            return 0
        return self.capacity - self.reserved


@dataclass(frozen=True)
class DayStatus:
    date: date
    status: DayState
    price_cents: int | None
    remaining: int


# ── Listing configuration (external catalog input) ────────


@dataclass(frozen=True)
class CancellationPolicy:
    """Refund policy applied when a booking is cancelled.

    Attributes:
        policy_type: ``free`` refunds everything until the stay starts,
            ``non_refundable`` never refunds, ``flexible`` uses the windows.
        full_refund_days: Full refund when cancelled more than this many
            days before the start date.
        partial_refund_days: Partial refund when cancelled at least this
            many days before the start date (and not eligible for full).
        partial_refund_percent: Percentage of the total refunded in the
            partial window.
    """

    policy_type: Literal["free", "flexible", "non_refundable"] = "flexible"
    full_refund_days: int = 7
    partial_refund_days: int = 1
    partial_refund_percent: int = 50

    def __post_init__(self) -> None:
        if self.policy_type not in ("free", "flexible", "non_refundable"):
            raise ValidationError("policy_type", f"unknown policy type '{self.policy_type}'")
        if not 0 <= self.full_refund_days <= 365:
            raise ValidationError("full_refund_days", "must be between 0 and 365")
        if not 0 <= self.partial_refund_days <= self.full_refund_days:
            raise ValidationError(
                "partial_refund_days", "must be between 0 and full_refund_days"
            )
        if not 0 <= self.partial_refund_percent <= 100:
            raise ValidationError("partial_refund_percent", "must be between 0 and 100")


@dataclass(frozen=True)
class ListingPolicy:
    listing_id: str
    tenant_id: str
    currency: str
    default_price_cents: int
    minimum_stay_nights: int = 1
    max_guests_per_booking: int = 10
    service_fee_rate: Decimal = Decimal("0.10")
    tax_rate: Decimal = Decimal("0.08")
    blocked_dates: frozenset[date] = frozenset()
    payment_mode: Literal["async", "sync"] = "async"
    cancellation_policy: CancellationPolicy = field(default_factory=CancellationPolicy)


@dataclass(frozen=True)
class Promotion:
    """Promo code: either a percentage or a fixed amount off the subtotal."""

    code: str
    percent_off: Decimal | None = None
    amount_off_cents: int | None = None
    listing_id: str | None = None
    active: bool = True

    def __post_init__(self) -> None:
        if (self.percent_off is None) == (self.amount_off_cents is None):
            raise ValueError("promotion needs exactly one of percent_off, amount_off_cents")
        if self.percent_off is not None and not Decimal(0) <= self.percent_off <= Decimal(100):
            raise ValueError("percent_off must be between 0 and 100")
        if self.amount_off_cents is not None and self.amount_off_cents < 0:
            raise ValueError("amount_off_cents must be >= 0")


# ── Pricing ───────────────────────────────────────────────


@dataclass(frozen=True)
class PricingQuote:
    """Immutable price breakdown, snapshotted onto a booking at creation."""

    base_price_cents: int
    nights: int
    nightly_cents: tuple[int, ...]
    subtotal_cents: int
    service_fee_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    promo_code: str | None = None

    def __post_init__(self) -> None:
        for name in ("subtotal_cents", "service_fee_cents", "tax_cents", "discount_cents"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        expected = (
            self.subtotal_cents + self.service_fee_cents + self.tax_cents - self.discount_cents
        )
        if self.total_cents != expected:
            raise ValueError(f"total_cents={self.total_cents} != components sum {expected}")
        if self.total_cents < 0:
            raise ValueError("total_cents must be >= 0")
        if len(self.nightly_cents) != self.nights:
            raise ValueError("one nightly price per night required")


# ── Bookings ──────────────────────────────────────────────


@dataclass(frozen=True)
class GuestContact:
    name: str
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class GuestDetails:
    primary: GuestContact
    guests: tuple[GuestContact, ...] = ()


@dataclass(frozen=True)
class Booking:
    id: str
    tenant_id: str
    listing_id: str
    user_id: str
    date_range: DateRange
    guest_count: int
    guest_details: GuestDetails
    quote: PricingQuote
    status: BookingStatus
    payment_status: PaymentStatus
    confirmation_code: str
    created_at: datetime
    updated_at: datetime
    reservation_units: int = 1
    special_requests: str | None = None
    payment_method_ref: str | None = None
    payment_ref: str | None = None
    paid_at: datetime | None = None
    idempotency_key: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    refund_cents: int | None = None

    @property
    def currency(self) -> str:
        return self.quote.currency

    @property
    def total_cents(self) -> int:
        return self.quote.total_cents


@dataclass(frozen=True)
class CancellationRecord:
    """Outcome of a cancellation. Derived, carried on the cancel event."""

    booking_id: str
    reason: str
    refund_cents: int
    processed_at: datetime
    anomaly: str | None = None


# ── Booking lists ─────────────────────────────────────────

BOOKING_SORT_KEYS = ("created_at", "start_date", "total_cents")
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class BookingFilters:
    """Filters, ordering and paging for a user's booking list.

    Empty status sets match every status. ``date_range`` keeps bookings
    whose stay overlaps it.
    """

    statuses: frozenset[BookingStatus] = frozenset()
    payment_statuses: frozenset[PaymentStatus] = frozenset()
    date_range: DateRange | None = None
    listing_id: str | None = None
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.sort_by not in BOOKING_SORT_KEYS:
            raise ValidationError(
                "sort_by", f"unknown sort key '{self.sort_by}'", {"allowed": list(BOOKING_SORT_KEYS)}
            )
        if self.sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order", "must be 'asc' or 'desc'")
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")
        if self.offset < 0:
            raise ValidationError("offset", "must be >= 0")

    def matches(self, booking: Booking) -> bool:
        if self.statuses and booking.status not in self.statuses:
            return False
        if self.payment_statuses and booking.payment_status not in self.payment_statuses:
            return False
        if self.listing_id is not None and booking.listing_id != self.listing_id:
            return False
        if self.date_range is not None and not booking.date_range.overlaps(self.date_range):
            return False
        return True

    def sort_value(self, booking: Booking) -> Any:
        if self.sort_by == "start_date":
            return booking.date_range.start
        if self.sort_by == "total_cents":
            return booking.total_cents
        return booking.created_at


@dataclass(frozen=True)
class BookingPage:
    bookings: tuple[Booking, ...]
    total: int
