"""Injectable clock so time-dependent logic stays deterministic in tests."""
from datetime import datetime, timedelta, timezone


class Clock:
    """Wall clock returning timezone-aware UTC instants."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant. Naive datetimes are treated as UTC."""

    def __init__(self, instant: datetime):
        self.instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self.instant = self.instant + timedelta(**kwargs)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC instant.

    MongoDB hands back naive UTC datetimes unless the client is tz-aware,
    and API clients may omit the offset, so naive values are read as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


clock = Clock()


def get_clock() -> Clock:
    """Dependency returning the application clock."""
    return clock
