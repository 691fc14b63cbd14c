"""Shared fakes for the paper engine tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.state_store import MarketStateStore


class MemoryBackend:
    """In-memory persistence backend that records every save."""

    def __init__(self, blob=None, fail_saves=False):
        self.blob = copy.deepcopy(blob)
        self.saves = []
        self.fail_saves = fail_saves
        self.path = "memory://paper_state"

    def load(self):
        return copy.deepcopy(self.blob)

    def save(self, blob):
        if self.fail_saves:
            return False
        self.blob = copy.deepcopy(blob)
        self.saves.append(self.blob)
        return True


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start=1_760_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(backend):
    return MarketStateStore(backend, initial_deposit=10_000.0)


@pytest.fixture
def spot_store(backend):
    return MarketStateStore(backend, initial_deposit=10_000.0, settlement="spot")


@pytest.fixture
def make_backend():
    return MemoryBackend
