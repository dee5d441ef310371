"""
Clock port

Every component reads "now" through an injected clock so expiry windows
(mutes, bans, presence timeouts, rate limit windows) can be driven
deterministically.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current naive UTC time"""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """Clock that only moves when told to (maintenance dry runs, replay, tests)"""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        """advance(minutes=5), advance(seconds=61), ..."""
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, moment: datetime):
        self._now = moment
