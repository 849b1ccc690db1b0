"""Availability resolver - day-by-day calendar status from slot snapshots.

Pure calculation: no storage access, no clock. The caller fetches slots
(and the listing's blocked dates / default price) and passes them in.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from slotbook.domain.models import DateRange, DayState, DayStatus, Slot


def _day_state(slot: Slot | None, blocked: bool) -> DayState:
    if slot is None or slot.capacity == 0 or slot.blocked or blocked:
        return DayState.UNAVAILABLE
    if slot.reserved >= slot.capacity:
        return DayState.BOOKED
    if slot.reserved > 0:
        return DayState.PARTIAL
    return DayState.AVAILABLE


def generate_calendar_days(
    date_range: DateRange,
    slots: Iterable[Slot],
    *,
    blocked_dates: Iterable[date] = (),
    default_price_cents: int | None = None,
) -> list[DayStatus]:
    """Derive one DayStatus per date in *date_range*.

    Status priority per date: unavailable (no slot, zero capacity or
    blocked), booked (reserved >= capacity), partial, available.

    Args:
        date_range: Dates to cover (end exclusive).
        slots: Slot snapshot; dates outside the range are ignored.
        blocked_dates: Dates the listing marks as explicitly blocked.
        default_price_cents: Listing default used when a slot has no
            price override.

    Returns:
        List of DayStatus ordered by date.
    """
    by_date = {s.date: s for s in slots}
    blocked = frozenset(blocked_dates)

    days: list[DayStatus] = []
    for day in date_range.dates():
        slot = by_date.get(day)
        state = _day_state(slot, day in blocked)

        price = default_price_cents
        if slot is not None and slot.base_price_cents is not None:
            price = slot.base_price_cents

        remaining = 0
        if state in (DayState.PARTIAL, DayState.AVAILABLE):
            remaining = slot.remaining

        days.append(DayStatus(date=day, status=state, price_cents=price, remaining=remaining))

    return days
