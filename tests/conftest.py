"""
Shared pytest fixtures: a fixed clock, a UTC analytics config and window
resolver, and an in-memory event store that records how it was queried.
"""

from datetime import datetime
from typing import List, Optional, Tuple

import pytest

from pendium_backend.kpi.config import AnalyticsConfig
from pendium_backend.kpi.dataset import KpiDataset
from pendium_backend.kpi.repository import InMemoryEventStore
from pendium_backend.kpi.windows import TimeWindowResolver

from factories import fixed_clock


class RecordingStore(InMemoryEventStore):
    """In-memory store that remembers the bounds of every load."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.loads: List[Tuple[Optional[datetime], Optional[datetime]]] = []

    def load(self, start, end) -> KpiDataset:
        self.loads.append((start, end))
        return super().load(start, end)


class UntouchableStore(InMemoryEventStore):
    """Fails the test if anything tries to read events."""

    def load(self, start, end) -> KpiDataset:
        raise AssertionError("event store must not be read")


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def config() -> AnalyticsConfig:
    return AnalyticsConfig(timezone="UTC")


@pytest.fixture
def resolver(clock) -> TimeWindowResolver:
    return TimeWindowResolver("UTC", clock=clock)


@pytest.fixture
def store(clock) -> RecordingStore:
    return RecordingStore(clock=clock)


@pytest.fixture
def untouchable_store(clock) -> UntouchableStore:
    return UntouchableStore(clock=clock)
