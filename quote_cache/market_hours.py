"""US equity market hours (9:30-16:00 America/New_York, Monday-Friday).

Exchange holidays are not modelled; on a holiday the worker simply refreshes
against an idle market.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

MARKET_TZ = ZoneInfo("America/New_York")
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)


def _to_market_time(now: Optional[datetime]) -> datetime:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(MARKET_TZ)


def is_market_open(now: Optional[datetime] = None) -> bool:
    """Whether the US market is in its regular session at ``now`` (UTC if naive)."""
    et = _to_market_time(now)
    if et.weekday() >= 5:
        return False
    return MARKET_OPEN <= et.time() < MARKET_CLOSE


def next_market_open(now: Optional[datetime] = None) -> datetime:
    """Return the next session open as an aware UTC datetime.

    During a session this is the following trading day's open.
    """
    et = _to_market_time(now)
    day = et.date()
    if et.time() >= MARKET_OPEN:
        day += timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    opening = datetime.combine(day, MARKET_OPEN, tzinfo=MARKET_TZ)
    return opening.astimezone(timezone.utc)


def seconds_until_market_open(now: Optional[datetime] = None) -> int:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0, int((next_market_open(now) - now).total_seconds()))
