"""Wiring: build the reservation core from Settings.

memory   - in-process catalog, slots, bookings and outbox (single process)
postgres - listings/slots/bookings/outbox tables via DATABASE_URL
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from slotbook.domain.availability import generate_calendar_days
from slotbook.domain.cancellation import CancellationProcessor
from slotbook.domain.ledger import BookingLedger
from slotbook.domain.models import DateRange, DayStatus
from slotbook.domain.ports import ListingCatalog, SlotStore, UnitOfWorkFactory
from slotbook.domain.pricing import PricingEngine
from slotbook.infra.catalog import InMemoryListingCatalog, PostgresListingCatalog
from slotbook.infra.memory import InMemoryDatabase
from slotbook.infra.settings import Settings, load_settings
from slotbook.infra.unit_of_work import PostgresSlotReader, postgres_unit_of_work_factory
from slotbook.observability.logging import get_logger, set_level

logger = get_logger(__name__)


@dataclass
class ReservationCore:
    settings: Settings
    catalog: ListingCatalog
    slots: SlotStore
    pricing: PricingEngine
    cancellation: CancellationProcessor
    ledger: BookingLedger
    database: InMemoryDatabase | None = None

    def get_availability(
        self, listing_id: str, date_range: DateRange, *, available_only: bool = False
    ) -> list[DayStatus]:
        """Day-by-day status and price for *date_range*.

        With *available_only*, only days with remaining capacity are returned.

        Raises:
            NotFound: Unknown listing.
        """
        policy = self.catalog.get_policy(listing_id)
        days = generate_calendar_days(
            date_range,
            self.slots.get_slots(listing_id, date_range),
            blocked_dates=policy.blocked_dates,
            default_price_cents=policy.default_price_cents,
        )
        if available_only:
            return [d for d in days if d.remaining > 0]
        return days


def build_core(settings: Settings | None = None, **ledger_options: Any) -> ReservationCore:
    """Assemble catalog, slot store, pricing, cancellation and ledger.

    Extra keyword arguments are passed to BookingLedger (e.g. ``clock``).
    """
    settings = settings or load_settings()
    set_level(settings.log_level)

    database: InMemoryDatabase | None = None
    catalog: ListingCatalog
    slots: SlotStore
    unit_of_work: UnitOfWorkFactory
    if settings.storage == "postgres":
        catalog = PostgresListingCatalog(settings.listing_defaults, settings.database_url)
        slots = PostgresSlotReader(settings.database_url)
        unit_of_work = postgres_unit_of_work_factory(settings.database_url)
    else:
        database = InMemoryDatabase()
        catalog = InMemoryListingCatalog(settings.listing_defaults)
        slots = database.slots
        unit_of_work = database.unit_of_work

    pricing = PricingEngine(catalog, slots)
    cancellation = CancellationProcessor(catalog)
    ledger = BookingLedger(
        catalog=catalog,
        unit_of_work=unit_of_work,
        pricing=pricing,
        cancellation=cancellation,
        confirmation_code_length=settings.confirmation_code_length,
        retry_attempts=settings.storage_retry_attempts,
        retry_base_delay=settings.storage_retry_base_delay,
        **ledger_options,
    )

    logger.info(
        "reservation core ready",
        extra={"extra_fields": {"storage": settings.storage}},
    )
    return ReservationCore(
        settings=settings,
        catalog=catalog,
        slots=slots,
        pricing=pricing,
        cancellation=cancellation,
        ledger=ledger,
        database=database,
    )
