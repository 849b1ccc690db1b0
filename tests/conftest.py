"""Shared pytest fixtures for slotbook tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import make_core, seed_slots, stay  # noqa: E402


@pytest.fixture
def core():
    """In-memory reservation core with one listing and no slots."""
    return make_core()


@pytest.fixture
def seeded_core(core):
    """Core with capacity 1 on every night of the default stay."""
    seed_slots(core, stay(), capacity=1)
    return core
