"""Redaction helpers for safe logging. Guest data must pass through these."""

import re
from datetime import date
from typing import Any

from slotbook.domain.models import GuestContact, GuestDetails

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_UUID_PATTERN = re.compile(r"[0-9a-fA-F]{8}-(?:[0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact phone numbers and email addresses from a string."""
    if _UUID_PATTERN.fullmatch(value):
        return value
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_guest_details(details: GuestDetails) -> str:
    """Only the party size survives; names and contacts never reach logs."""
    return f"guests(count={1 + len(details.guests)})"


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, GuestDetails):
        return redact_guest_details(value)
    if isinstance(value, GuestContact):
        return _REDACTED
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
