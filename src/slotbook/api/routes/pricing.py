"""Pricing endpoint - quote a stay without reserving anything."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from slotbook.api.dependencies import get_core, http_error
from slotbook.api.dto import PricingRequest, QuoteOut
from slotbook.bootstrap import ReservationCore
from slotbook.domain.errors import SlotbookError

router = APIRouter(tags=["pricing"])


@router.post("/pricing", response_model=QuoteOut)
def quote_stay(body: PricingRequest, core: ReservationCore = Depends(get_core)) -> QuoteOut:
    try:
        quote = core.pricing.calculate_pricing(
            body.listing_id,
            body.date_range(),
            body.guest_count,
            body.promo_code,
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc
    return QuoteOut.from_domain(quote)
