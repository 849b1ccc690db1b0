"""Listing catalog adapters.

The catalog is an external collaborator; these adapters expose it to the
reservation core as ListingPolicy / Promotion values.

Priority for each policy value:
1. Listing configuration (in-memory registration or ``listings`` row)
2. Environment fallbacks (Settings.listing_defaults)
"""

from __future__ import annotations

import threading
from dataclasses import replace
from decimal import Decimal
from typing import Any

from slotbook.domain.errors import NotFound
from slotbook.domain.models import CancellationPolicy, ListingPolicy, Promotion
from slotbook.infra.db import txn
from slotbook.infra.repositories.listings_repository import (
    fetch_blocked_dates,
    fetch_listing,
    fetch_promotion,
)
from slotbook.infra.settings import ListingDefaults


def policy_from_row(
    row: dict[str, Any],
    defaults: ListingDefaults,
    blocked_dates=(),
) -> ListingPolicy:
    """Merge a stored listing row with environment fallbacks."""

    def pick(key: str, fallback: Any) -> Any:
        value = row.get(key)
        return fallback if value is None else value

    payment_mode = pick("payment_mode", "async")
    if payment_mode not in ("async", "sync"):
        payment_mode = "async"

    return ListingPolicy(
        listing_id=row["listing_id"],
        tenant_id=row["tenant_id"],
        currency=pick("currency", defaults.currency).upper(),
        default_price_cents=row["default_price_cents"],
        minimum_stay_nights=pick("minimum_stay_nights", defaults.minimum_stay_nights),
        max_guests_per_booking=pick("max_guests_per_booking", defaults.max_guests_per_booking),
        service_fee_rate=Decimal(pick("service_fee_rate", defaults.service_fee_rate)),
        tax_rate=Decimal(pick("tax_rate", defaults.tax_rate)),
        blocked_dates=frozenset(blocked_dates),
        payment_mode=payment_mode,
        cancellation_policy=CancellationPolicy(**(row.get("cancellation_policy") or {})),
    )


def promotion_from_row(row: dict[str, Any]) -> Promotion:
    percent = row.get("percent_off")
    return Promotion(
        code=row["code"],
        percent_off=Decimal(percent) if percent is not None else None,
        amount_off_cents=row.get("amount_off_cents"),
        listing_id=row.get("listing_id"),
        active=bool(row.get("active", True)),
    )


class InMemoryListingCatalog:
    def __init__(self, defaults: ListingDefaults | None = None) -> None:
        self._defaults = defaults or ListingDefaults()
        self._policies: dict[str, ListingPolicy] = {}
        self._promotions: dict[str, Promotion] = {}
        self._lock = threading.Lock()

    def add_listing(
        self,
        listing_id: str,
        *,
        tenant_id: str,
        default_price_cents: int,
        **overrides: Any,
    ) -> ListingPolicy:
        """Register a listing; unspecified values come from the defaults."""
        row = {
            "listing_id": listing_id,
            "tenant_id": tenant_id,
            "default_price_cents": default_price_cents,
            **{
                k: v
                for k, v in overrides.items()
                if k not in ("blocked_dates", "cancellation_policy")
            },
        }
        policy = policy_from_row(row, self._defaults, overrides.get("blocked_dates", ()))
        if "cancellation_policy" in overrides:
            policy = replace(policy, cancellation_policy=overrides["cancellation_policy"])
        with self._lock:
            self._policies[listing_id] = policy
        return policy

    def add_promotion(self, promotion: Promotion) -> None:
        with self._lock:
            self._promotions[promotion.code.upper()] = promotion

    def get_policy(self, listing_id: str) -> ListingPolicy:
        with self._lock:
            policy = self._policies.get(listing_id)
        if policy is None:
            raise NotFound("listing", listing_id)
        return policy

    def get_promotion(self, code: str) -> Promotion | None:
        with self._lock:
            return self._promotions.get(code.upper())


class PostgresListingCatalog:
    def __init__(self, defaults: ListingDefaults, dsn: str | None = None) -> None:
        self._defaults = defaults
        self._dsn = dsn

    def get_policy(self, listing_id: str) -> ListingPolicy:
        with txn(dsn=self._dsn) as cur:
            row = fetch_listing(cur, listing_id)
            if row is None:
                raise NotFound("listing", listing_id)
            blocked = fetch_blocked_dates(cur, listing_id)
        return policy_from_row(row, self._defaults, blocked)

    def get_promotion(self, code: str) -> Promotion | None:
        with txn(dsn=self._dsn) as cur:
            row = fetch_promotion(cur, code.upper())
        return promotion_from_row(row) if row is not None else None
