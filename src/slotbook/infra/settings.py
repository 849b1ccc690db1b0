"""Runtime settings loaded from environment variables.

Listing-level values (currency, stay and guest limits, fee and tax
rates) are fallbacks: a listing that defines its own value wins.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Literal, Mapping

StorageBackend = Literal["memory", "postgres"]


@dataclass(frozen=True)
class ListingDefaults:
    currency: str = "USD"
    minimum_stay_nights: int = 1
    max_guests_per_booking: int = 10
    service_fee_rate: Decimal = Decimal("0.10")
    tax_rate: Decimal = Decimal("0.08")


@dataclass(frozen=True)
class Settings:
    storage: StorageBackend = "memory"
    database_url: str | None = None
    storage_retry_attempts: int = 3
    storage_retry_base_delay: float = 0.05
    confirmation_code_length: int = 8
    log_level: str = "INFO"
    listing_defaults: ListingDefaults = ListingDefaults()


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _rate(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise RuntimeError(f"{name} must be a decimal rate, got {raw!r}") from None
    if not Decimal(0) <= value <= Decimal(1):
        raise RuntimeError(f"{name} must be between 0 and 1, got {raw!r}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from *env* (defaults to os.environ).

    Raises:
        RuntimeError: On an unknown storage backend, a missing DATABASE_URL
            for postgres, or a malformed numeric value.
    """
    if env is None:
        env = os.environ

    storage = env.get("SLOTBOOK_STORAGE", "memory")
    if storage not in ("memory", "postgres"):
        raise RuntimeError(f"SLOTBOOK_STORAGE must be 'memory' or 'postgres', got {storage!r}")

    database_url = env.get("DATABASE_URL") or None
    if storage == "postgres" and not database_url:
        raise RuntimeError("DATABASE_URL environment variable not set")

    defaults = ListingDefaults(
        currency=env.get("SLOTBOOK_DEFAULT_CURRENCY", "USD").upper(),
        minimum_stay_nights=_int(env, "SLOTBOOK_DEFAULT_MIN_STAY_NIGHTS", 1),
        max_guests_per_booking=_int(env, "SLOTBOOK_DEFAULT_MAX_GUESTS", 10),
        service_fee_rate=_rate(env, "SLOTBOOK_DEFAULT_SERVICE_FEE_RATE", Decimal("0.10")),
        tax_rate=_rate(env, "SLOTBOOK_DEFAULT_TAX_RATE", Decimal("0.08")),
    )

    return Settings(
        storage=storage,  # type: ignore[arg-type]
        database_url=database_url,
        storage_retry_attempts=_int(env, "SLOTBOOK_STORAGE_RETRY_ATTEMPTS", 3),
        storage_retry_base_delay=_int(env, "SLOTBOOK_STORAGE_RETRY_BASE_DELAY_MS", 50) / 1000,
        confirmation_code_length=_int(env, "SLOTBOOK_CONFIRMATION_CODE_LENGTH", 8),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        listing_defaults=defaults,
    )
