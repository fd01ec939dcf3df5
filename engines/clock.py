"""Clocks supplying the current instant and calendar day.

Calendar days (daily credits, streaks, quiz sessions) are evaluated in a
single reference timezone so that "today" never depends on the client.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the ``tzinfo`` for an IANA zone name, ``UTC`` when empty."""

    if not name or name.strip().upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


class Clock(Protocol):
    tz: tzinfo

    def now(self) -> datetime:
        ...


def today_for(clock: Clock, now: Optional[datetime] = None) -> date:
    """Calendar day of ``now`` (or the clock's current instant) in the clock's timezone."""

    instant = now if now is not None else clock.now()
    return instant.astimezone(clock.tz).date()


class SystemClock:
    """Wall clock returning timezone-aware instants."""

    def __init__(self, tz: tzinfo | str | None = None) -> None:
        self.tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return today_for(self)


class FixedClock:
    """Manually advanced clock used to simulate time travel."""

    def __init__(self, start: datetime, tz: tzinfo | str | None = None) -> None:
        self.tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
        if start.tzinfo is None:
            start = start.replace(tzinfo=self.tz)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return today_for(self)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._now = instant

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        logger.debug("Clock advanced to %s", self._now.isoformat())
        return self._now
