"""Bounded retry with exponential backoff for transient storage failures.

Only StorageError is retried. Domain errors (Overbooked, ValidationError,
InvalidStateTransition, NotFound) propagate on the first attempt.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from slotbook.domain.errors import StorageError
from slotbook.observability.logging import get_logger
from slotbook.observability.redaction import safe_log_context

logger = get_logger(__name__)

T = TypeVar("T")


def retry_storage(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn*, retrying on StorageError up to *attempts* times in total.

    Delay doubles after each failure: base_delay, 2*base_delay, ... capped
    at max_delay.

    Raises:
        StorageError: The last failure once attempts are exhausted.
        ValueError: If attempts < 1.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StorageError:
            if attempt == attempts:
                logger.error(
                    "storage retries exhausted",
                    extra={"extra_fields": safe_log_context(attempts=attempts)},
                )
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "storage failure, retrying",
                extra={"extra_fields": safe_log_context(attempt=attempt, delay=delay)},
            )
            sleep(delay)

    raise AssertionError("unreachable")
