"""Listings repository - listing policy and promotions read model.

Uses raw SQL with psycopg2 (no ORM). Columns left NULL fall back to the
environment defaults applied by the catalog.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def fetch_listing(cur: PgCursor, listing_id: str) -> dict[str, Any] | None:
    """Fetch a listing's policy columns, or None if it does not exist."""
    cur.execute(
        """
        SELECT id, tenant_id, currency, default_price_cents,
               minimum_stay_nights, max_guests_per_booking,
               service_fee_rate, tax_rate, payment_mode,
               cancellation_policy
        FROM listings
        WHERE id = %s
        """,
        (listing_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "listing_id": row[0],
        "tenant_id": row[1],
        "currency": row[2],
        "default_price_cents": row[3],
        "minimum_stay_nights": row[4],
        "max_guests_per_booking": row[5],
        "service_fee_rate": row[6],
        "tax_rate": row[7],
        "payment_mode": row[8],
        "cancellation_policy": row[9] or {},
    }


def fetch_blocked_dates(cur: PgCursor, listing_id: str) -> list[date]:
    """Dates the listing owner blocked outright (no slot needed)."""
    cur.execute(
        """
        SELECT date FROM listing_blocked_dates
        WHERE listing_id = %s
        ORDER BY date
        """,
        (listing_id,),
    )
    return [row[0] for row in cur.fetchall()]


def fetch_promotion(cur: PgCursor, code: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT code, percent_off, amount_off_cents, listing_id, active
        FROM promotions
        WHERE code = %s
        """,
        (code,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return {
        "code": row[0],
        "percent_off": row[1],
        "amount_off_cents": row[2],
        "listing_id": row[3],
        "active": row[4],
    }
