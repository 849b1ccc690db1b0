"""Cancellation refund calculation.

Refunds are computed from the listing's CancellationPolicy and the time
left before the stay starts (00:00 UTC of the start date). Computation
fails closed: a timestamp or policy that cannot be used yields a zero
refund plus a reported anomaly, never an exception, so the booking can
still be cancelled and its capacity released.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from slotbook.domain.errors import NotFound
from slotbook.domain.models import Booking, BookingStatus, CancellationPolicy, PaymentStatus
from slotbook.domain.ports import ListingCatalog
from slotbook.domain.pricing import round_half_up
from slotbook.observability.logging import get_logger
from slotbook.observability.redaction import safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class RefundDecision:
    refund_cents: int
    rule: str
    anomaly: str | None = None


def _parse_now(now: datetime | str | None) -> tuple[datetime | None, str | None]:
    if now is None:
        return None, "missing_timestamp"
    if isinstance(now, str):
        try:
            now = datetime.fromisoformat(now)
        except ValueError:
            return None, "unparseable_timestamp"
    if not isinstance(now, datetime):
        return None, "unparseable_timestamp"
    if now.tzinfo is None:
        return None, "naive_timestamp"
    return now, None


def refund_for_policy(
    total_cents: int, time_to_start: timedelta, policy: CancellationPolicy
) -> RefundDecision:
    """Apply *policy* to a booking total given the time left before check-in."""
    if time_to_start <= timedelta(0):
        return RefundDecision(0, "stay_started")

    if policy.policy_type == "non_refundable":
        return RefundDecision(0, "non_refundable")

    if policy.policy_type == "free":
        return RefundDecision(total_cents, "full")

    if time_to_start > timedelta(days=policy.full_refund_days):
        return RefundDecision(total_cents, "full")

    if time_to_start >= timedelta(days=policy.partial_refund_days):
        amount = round_half_up(
            Decimal(total_cents) * Decimal(policy.partial_refund_percent) / Decimal(100)
        )
        return RefundDecision(amount, "partial")

    return RefundDecision(0, "outside_refund_window")


class CancellationProcessor:
    """Computes the refund owed when a booking is cancelled."""

    def __init__(self, catalog: ListingCatalog):
        self._catalog = catalog

    def compute_refund(self, booking: Booking, now: datetime | str | None) -> RefundDecision:
        if booking.status == BookingStatus.NO_SHOW:
            return RefundDecision(0, "no_show")

        if booking.payment_status != PaymentStatus.PAID:
            return RefundDecision(0, "nothing_captured")

        parsed, anomaly = _parse_now(now)
        if anomaly is None:
            try:
                policy = self._catalog.get_policy(booking.listing_id).cancellation_policy
            except NotFound:
                anomaly = "policy_unavailable"

        if anomaly is not None:
            logger.warning(
                "refund computation anomaly, refunding zero",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.id, anomaly=anomaly
                    )
                },
            )
            return RefundDecision(0, "anomaly", anomaly)

        start_at = datetime.combine(booking.date_range.start, time.min, tzinfo=timezone.utc)
        return refund_for_policy(booking.total_cents, start_at - parsed, policy)
