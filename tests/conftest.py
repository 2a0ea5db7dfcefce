from datetime import datetime, timedelta

import pytest

from engine import TokenEngine
from simulation import SimulatedClock

DAY = datetime(2026, 3, 2)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY.replace(hour=hour, minute=minute)


@pytest.fixture
def clock():
    return SimulatedClock(at(8, 0))


@pytest.fixture
def engine(clock):
    return TokenEngine(clock=clock)


@pytest.fixture
def make_slot(engine):
    """Create a slot for a doctor starting at ``hour`` (one hour long by default)."""

    def _make(hour: int, capacity: int, doctor_id: str = "D1", minutes: int = 60):
        start = at(hour)
        return engine.create_slot(
            doctor_id,
            f"Dr. {doctor_id}",
            "General Medicine",
            start,
            start + timedelta(minutes=minutes),
            capacity,
        )

    return _make
