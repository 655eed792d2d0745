"""Settable clock for tests."""

from datetime import datetime, timedelta, timezone


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward (or back, with a negative value)."""
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now
