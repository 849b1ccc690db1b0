"""Reservation error taxonomy.

Every failure the reservation core reports derives from SlotbookError and
carries a stable ``code`` plus a ``meta`` dict with enough detail for a
client to self-correct (offending date, policy violated).
"""

from __future__ import annotations

from datetime import date
from typing import Any


class SlotbookError(Exception):
    """Base class for reservation core errors."""

    code = "error"

    def __init__(self, message: str, meta: dict[str, Any] | None = None):
        self.meta = meta or {}
        super().__init__(message)


class ValidationError(SlotbookError):
    """Malformed or out-of-policy input. Never retried."""

    code = "validation_error"

    def __init__(self, field: str, message: str, meta: dict[str, Any] | None = None):
        self.field = field
        super().__init__(message, {"field": field, **(meta or {})})


class Overbooked(SlotbookError):
    """Capacity exhausted for at least one date of the requested range."""

    code = "overbooked"

    def __init__(self, listing_id: str, failed_date: date):
        self.listing_id = listing_id
        self.date = failed_date
        super().__init__(
            f"Listing {listing_id} has no remaining capacity on {failed_date.isoformat()}",
            {"listing_id": listing_id, "date": failed_date.isoformat()},
        )


class NotFound(SlotbookError):
    """Referenced listing or booking does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity})


class InvalidStateTransition(SlotbookError):
    code = "invalid_state_transition"

    def __init__(self, booking_id: str, status: str, event: str):
        self.booking_id = booking_id
        self.status = status
        self.event = event
        super().__init__(
            f"Booking {booking_id} in status '{status}' does not accept '{event}'",
            {"status": status, "event": event},
        )


class StorageError(SlotbookError):
    """Transient persistence failure. The only retryable error."""

    code = "storage_unavailable"

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)
