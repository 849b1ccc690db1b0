"""Slots repository - per-(listing, date) capacity counters.

Uses raw SQL with psycopg2 (no ORM).
Reservation uses guarded UPDATEs: the WHERE clause carries the capacity
check, so check-and-increment is one atomic statement per row and two
transactions can never both take the last unit.
"""

from datetime import date

from psycopg2.extensions import cursor as PgCursor

from slotbook.domain.errors import Overbooked
from slotbook.domain.models import DateRange, Slot


def fetch_slots(cur: PgCursor, *, listing_id: str, date_range: DateRange) -> list[Slot]:
    """Fetch one slot per date of the range, synthesizing missing dates.

    Args:
        cur: Database cursor.
        listing_id: Listing identifier.
        date_range: Dates to fetch (end exclusive).

    Returns:
        Slots ordered by date; dates without a row get capacity=0.
    """
    cur.execute(
        """
        SELECT date, capacity, reserved, base_price_cents, blocked
        FROM slots
        WHERE listing_id = %s
          AND date >= %s
          AND date < %s
        ORDER BY date
        """,
        (listing_id, date_range.start, date_range.end),
    )
    by_date = {
        row[0]: Slot(
            listing_id=listing_id,
            date=row[0],
            capacity=row[1],
            reserved=row[2],
            base_price_cents=row[3],
            blocked=row[4],
        )
        for row in cur.fetchall()
    }
    return [by_date.get(d) or Slot(listing_id, d, capacity=0) for d in date_range.dates()]


def increment_reserved(
    cur: PgCursor,
    *,
    listing_id: str,
    night_date: date,
    units: int,
) -> bool:
    """Increment reserved for one date with a capacity guard.

    Guard: reserved + units <= capacity AND NOT blocked.

    Returns:
        True if incremented, False if no capacity (or no slot row).
    """
    cur.execute(
        """
        UPDATE slots
        SET reserved = reserved + %s, updated_at = now()
        WHERE listing_id = %s
          AND date = %s
          AND NOT blocked
          AND reserved + %s <= capacity
        RETURNING reserved
        """,
        (units, listing_id, night_date, units),
    )
    return cur.fetchone() is not None


def decrement_reserved(
    cur: PgCursor,
    *,
    listing_id: str,
    night_date: date,
    units: int,
) -> None:
    """Decrement reserved for one date, floored at 0."""
    cur.execute(
        """
        UPDATE slots
        SET reserved = GREATEST(reserved - %s, 0), updated_at = now()
        WHERE listing_id = %s
          AND date = %s
        """,
        (units, listing_id, night_date),
    )


def reserve_range(
    cur: PgCursor,
    *,
    listing_id: str,
    date_range: DateRange,
    units: int,
) -> None:
    """Reserve *units* on every date of the range (date asc order).

    Must run inside a transaction: on the first failing date Overbooked is
    raised and the caller's transaction rollback undoes earlier increments.

    Raises:
        Overbooked: Naming the first date without capacity.
    """
    for night in date_range.dates():
        if not increment_reserved(cur, listing_id=listing_id, night_date=night, units=units):
            raise Overbooked(listing_id, night)


def release_range(
    cur: PgCursor,
    *,
    listing_id: str,
    date_range: DateRange,
    units: int,
) -> None:
    """Release *units* on every date of the range (date asc order)."""
    for night in date_range.dates():
        decrement_reserved(cur, listing_id=listing_id, night_date=night, units=units)


def upsert_slot(cur: PgCursor, slot: Slot) -> None:
    """Create or update a slot's capacity configuration (keeps reserved)."""
    cur.execute(
        """
        INSERT INTO slots (listing_id, date, capacity, reserved, base_price_cents, blocked)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (listing_id, date) DO UPDATE
        SET capacity = EXCLUDED.capacity,
            base_price_cents = EXCLUDED.base_price_cents,
            blocked = EXCLUDED.blocked,
            updated_at = now()
        """,
        (
            slot.listing_id,
            slot.date,
            slot.capacity,
            slot.reserved,
            slot.base_price_cents,
            slot.blocked,
        ),
    )
