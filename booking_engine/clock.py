"""Injectable clocks.

Everything time-dependent asks a clock for "now" so tests can pin time.
All datetimes are naive local wall-clock values.
"""
from datetime import datetime, timedelta


class SystemClock:
    """Wall clock of the host."""

    def now(self) -> datetime:
        return datetime.now()


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime):
        self.current = current

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta kwargs (minutes=1, hours=2, ...)."""
        self.current = self.current + timedelta(**kwargs)
        return self.current
