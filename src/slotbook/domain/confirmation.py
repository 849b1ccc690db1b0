"""Confirmation code generation.

Codes are short, upper-case and avoid look-alike characters (0/O, 1/I/L)
so they can be read over the phone.
"""

from __future__ import annotations

import secrets
from typing import Callable

from slotbook.domain.errors import StorageError

ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
MAX_ATTEMPTS = 10


class ConfirmationCodeExhausted(StorageError):
    """Raised when no unused code was found within MAX_ATTEMPTS draws.

    Retryable: the whole unit of work is re-run with fresh draws.
    """


def random_code(length: int = 8) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_confirmation_code(
    exists: Callable[[str], bool],
    *,
    length: int = 8,
    draw: Callable[[int], str] = random_code,
) -> str:
    """Draw codes until one is not taken according to *exists*."""
    for _ in range(MAX_ATTEMPTS):
        code = draw(length)
        if not exists(code):
            return code
    raise ConfirmationCodeExhausted(f"no free confirmation code after {MAX_ATTEMPTS} attempts")
