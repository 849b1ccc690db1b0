"""Availability endpoint - day-by-day calendar for a listing."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Path, Query

from slotbook.api.dependencies import get_core, http_error
from slotbook.api.dto import DayStatusOut
from slotbook.bootstrap import ReservationCore
from slotbook.domain.errors import SlotbookError
from slotbook.domain.models import DateRange

router = APIRouter(prefix="/listings", tags=["availability"])


@router.get("/{listing_id}/availability", response_model=list[DayStatusOut])
def get_availability(
    listing_id: str = Path(..., description="Listing identifier"),
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    available_only: bool = Query(False, alias="availableOnly"),
    core: ReservationCore = Depends(get_core),
) -> list[DayStatusOut]:
    """Return status (unavailable/booked/partial/available) and price per date.

    endDate is exclusive; a range spans at most MAX_RANGE_DAYS days. With
    availableOnly, days that cannot be booked are left out.
    """
    try:
        days = core.get_availability(
            listing_id, DateRange(start_date, end_date), available_only=available_only
        )
    except SlotbookError as exc:
        raise http_error(exc) from exc

    return [DayStatusOut.from_domain(d) for d in days]
