"""Clock helpers. Instants are naive datetimes in UTC throughout the engine."""

from datetime import datetime, timedelta, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """A settable clock for deterministic expiry checks."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an incoming datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
