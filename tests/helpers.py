"""Shared test helper functions for slotbook tests.

Regular functions (not fixtures), importable from conftest.py and test
modules alike.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from slotbook.bootstrap import ReservationCore, build_core
from slotbook.domain.models import DateRange, GuestContact, GuestDetails, Slot
from slotbook.infra.settings import Settings

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
USER_ID = "user-1"
LISTING_ID = "listing-1"

FIXED_NOW = datetime(2030, 1, 10, 12, 0, tzinfo=timezone.utc)
STAY_START = date(2030, 2, 1)


def fixed_clock(now: datetime = FIXED_NOW):
    return lambda: now


def stay(nights: int = 3, start: date = STAY_START) -> DateRange:
    return DateRange(start, start + timedelta(days=nights))


def guest_details(name: str = "Ana Souza", extra_guests: int = 0) -> GuestDetails:
    return GuestDetails(
        primary=GuestContact(name=name, email="ana@example.com", phone="+5511999998888"),
        guests=tuple(GuestContact(name=f"Guest {i}") for i in range(extra_guests)),
    )


def make_core(clock=None, settings: Settings | None = None, **listing_overrides) -> ReservationCore:
    """In-memory core with one listing (USD, 100.00/night) registered."""
    core = build_core(
        settings or Settings(storage_retry_base_delay=0.0),
        clock=clock or fixed_clock(),
    )
    core.catalog.add_listing(
        LISTING_ID,
        tenant_id=TENANT_ID,
        default_price_cents=10000,
        **listing_overrides,
    )
    return core


def seed_slots(
    core: ReservationCore,
    date_range: DateRange,
    *,
    capacity: int = 1,
    reserved: int = 0,
    listing_id: str = LISTING_ID,
    base_price_cents: int | None = None,
) -> None:
    for day in date_range.dates():
        core.slots.put_slot(
            Slot(
                listing_id=listing_id,
                date=day,
                capacity=capacity,
                reserved=reserved,
                base_price_cents=base_price_cents,
            )
        )


def reserved_counts(core: ReservationCore, date_range: DateRange, listing_id: str = LISTING_ID):
    return [s.reserved for s in core.slots.get_slots(listing_id, date_range)]


def create_booking(core: ReservationCore, date_range: DateRange | None = None, **kwargs):
    params = {
        "tenant_id": TENANT_ID,
        "user_id": USER_ID,
        "listing_id": LISTING_ID,
        "date_range": date_range or stay(),
        "guest_count": 2,
        "guest_details": guest_details(),
    }
    params.update(kwargs)
    return core.ledger.create(**params)
