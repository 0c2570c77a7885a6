"""Weekly uptime window evaluation.

A day's window ``start``/``end`` are "HH:MM" strings. ``24:00`` is the only
hour-24 token and means 1440 minutes (midnight of the following day). A window
whose start is not before its end crosses midnight and keeps matching into the
first minutes of the next day, which is why yesterday's window is checked too.
"""
import re
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from manager.models import DayWindow, WeeklySchedule
from manager.utils import LoggerSetup

logger = LoggerSetup.setup('scheduler')

MINUTES_PER_DAY = 1440

_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


def parse_time(value: str) -> int:
    """Return minutes since midnight for "HH:MM", or -1 if invalid."""
    if not value or not isinstance(value, str):
        return -1

    match = _TIME_RE.match(value)
    if not match:
        return -1

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if hours > 23 or minutes > 59:
        return -1
    return hours * 60 + minutes


def weekday_of(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return moment.isoweekday() % 7


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def _bounds(window: Optional[DayWindow]):
    """(start, effective_start, end, crosses_midnight) or None if unusable."""
    if window is None or not window.enabled:
        return None

    start = parse_time(window.start)
    end = parse_time(window.end)
    if start == -1 or end == -1:
        return None

    effective_start = 0 if start == MINUTES_PER_DAY else start
    crosses = start == MINUTES_PER_DAY or effective_start >= end
    return start, effective_start, end, crosses


def localize(moment: datetime, timezone: str) -> Optional[datetime]:
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning(f"Unknown schedule timezone: {timezone!r}")
        return None
    return moment.astimezone(zone)


def is_within_window(schedule: WeeklySchedule, now: datetime) -> bool:
    if not schedule.enabled:
        return False

    local = localize(now, schedule.timezone)
    if local is None:
        return False

    day = weekday_of(local)
    minutes = minute_of_day(local)

    today = _bounds(schedule.windows.get(day))
    # A 24:00 start opens at the very end of the day, so only the following
    # day can fall inside it.
    if today is not None and today[0] != MINUTES_PER_DAY:
        _, effective_start, end, crosses = today
        if crosses:
            if minutes >= effective_start:
                return True
        elif effective_start <= minutes < end:
            return True

    yesterday = _bounds(schedule.windows.get((day - 1) % 7))
    if yesterday is not None:
        _, _, end, crosses = yesterday
        if crosses and minutes < end:
            return True

    return False
