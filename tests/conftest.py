"""Shared test configuration."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2025, 3, 3, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the engine and loader accept; advanced by hand."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 1) -> None:
        self.now += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock()
