"""Pricing engine - per-date quote with service fee, tax and promo discount.

Rounding: every component is rounded once to a whole minor unit with
ROUND_HALF_UP; the total is the exact sum of the rounded components.
Tax is applied to subtotal + service fee.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from slotbook.domain.errors import ValidationError
from slotbook.domain.models import DateRange, ListingPolicy, PricingQuote, Promotion, Slot
from slotbook.domain.ports import ListingCatalog, SlotStore

_MINOR_UNIT = Decimal("1")


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount of minor units to an int, halves away from zero."""
    return int(value.quantize(_MINOR_UNIT, rounding=ROUND_HALF_UP))


def resolve_discount(promotion: Promotion | None, subtotal_cents: int) -> int:
    """Discount for *promotion* against the subtotal (uncapped)."""
    if promotion is None:
        return 0
    if promotion.percent_off is not None:
        return round_half_up(Decimal(subtotal_cents) * promotion.percent_off / Decimal(100))
    return promotion.amount_off_cents or 0


def nightly_prices(
    policy: ListingPolicy, date_range: DateRange, slots: Sequence[Slot]
) -> tuple[int, ...]:
    """Effective price per date: slot override, else listing default."""
    overrides = {s.date: s.base_price_cents for s in slots if s.base_price_cents is not None}
    return tuple(overrides.get(d, policy.default_price_cents) for d in date_range.dates())


def build_quote(
    *,
    policy: ListingPolicy,
    date_range: DateRange,
    nightly_cents: Sequence[int],
    promotion: Promotion | None = None,
) -> PricingQuote:
    """Assemble a PricingQuote from per-night prices and the listing policy.

    Raises:
        ValidationError: If nights are below the listing's minimum stay.
    """
    nights = date_range.nights
    if nights < policy.minimum_stay_nights:
        raise ValidationError(
            "date_range",
            f"minimum stay is {policy.minimum_stay_nights} nights",
            {"nights": nights, "minimum_stay_nights": policy.minimum_stay_nights},
        )

    subtotal = sum(nightly_cents)
    service_fee = round_half_up(Decimal(subtotal) * policy.service_fee_rate)
    tax = round_half_up(Decimal(subtotal + service_fee) * policy.tax_rate)
    discount = min(resolve_discount(promotion, subtotal), subtotal + service_fee + tax)

    return PricingQuote(
        base_price_cents=policy.default_price_cents,
        nights=nights,
        nightly_cents=tuple(nightly_cents),
        subtotal_cents=subtotal,
        service_fee_cents=service_fee,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=subtotal + service_fee + tax - discount,
        currency=policy.currency,
        promo_code=promotion.code if promotion else None,
    )


class PricingEngine:
    """Quotes a stay for a listing. Read-only; safe to call concurrently."""

    def __init__(self, catalog: ListingCatalog, slots: SlotStore):
        self._catalog = catalog
        self._slots = slots

    def _promotion(self, listing_id: str, promo_code: str | None) -> Promotion | None:
        if promo_code is None or not promo_code.strip():
            return None
        code = promo_code.strip().upper()
        promotion = self._catalog.get_promotion(code)
        if promotion is None or not promotion.active:
            raise ValidationError("promo_code", f"promo code '{code}' is not valid")
        if promotion.listing_id is not None and promotion.listing_id != listing_id:
            raise ValidationError("promo_code", f"promo code '{code}' does not apply to this listing")
        return promotion

    def calculate_pricing(
        self,
        listing_id: str,
        date_range: DateRange,
        guest_count: int,
        promo_code: str | None = None,
        *,
        slots: Sequence[Slot] | None = None,
    ) -> PricingQuote:
        """Quote *date_range* for *guest_count* guests.

        Args:
            listing_id: Listing to price.
            date_range: Stay dates (end exclusive).
            guest_count: Number of guests (checked against the listing max).
            promo_code: Optional promotion code.
            slots: Pre-fetched slot snapshot; read from the slot store if None.

        Raises:
            NotFound: Unknown listing.
            ValidationError: Guest count, minimum stay or promo code invalid.
        """
        policy = self._catalog.get_policy(listing_id)
        validate_guest_count(policy, guest_count)
        promotion = self._promotion(listing_id, promo_code)

        if slots is None:
            slots = self._slots.get_slots(listing_id, date_range)

        return build_quote(
            policy=policy,
            date_range=date_range,
            nightly_cents=nightly_prices(policy, date_range, slots),
            promotion=promotion,
        )


def validate_guest_count(policy: ListingPolicy, guest_count: int) -> None:
    if guest_count < 1:
        raise ValidationError("guest_count", "at least one guest is required")
    if guest_count > policy.max_guests_per_booking:
        raise ValidationError(
            "guest_count",
            f"at most {policy.max_guests_per_booking} guests per booking",
            {"max_guests_per_booking": policy.max_guests_per_booking},
        )
