"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from prediction_service.models import Gate, Direction, Report, GateStatus, TrainCandidate


# Monday, outside every time-of-day window
WEEKDAY_AFTERNOON = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return WEEKDAY_AFTERNOON


@pytest.fixture
def gate() -> Gate:
    """A gate next to Belgaum station, open to trains in both directions."""
    return Gate(id="G1", name="Tilakwadi Gate", station_code="BGM", direction=Direction.BOTH)


@pytest.fixture
def make_train() -> Callable[..., TrainCandidate]:
    """Factory for train candidates with sensible defaults."""
    def _make(number:str = "12779", scheduled:str = "14:00", train_type:str = "EXP", **kwargs) -> TrainCandidate:
        kwargs.setdefault("name", f"Express {number}")
        return TrainCandidate(number=number, scheduled_arrival=scheduled, train_type=train_type, **kwargs)
    return _make


@pytest.fixture
def make_report(now) -> Callable[..., Report]:
    """Factory for crowd reports `minutes_ago` before the reference time."""
    def _make(status:GateStatus = GateStatus.CLOSED, minutes_ago:float = 1, gate_id:str = "G1",
              user_id:str = None) -> Report:
        return Report(gate_id=gate_id, status=status, timestamp=now - timedelta(minutes=minutes_ago),
                      user_id=user_id)
    return _make
