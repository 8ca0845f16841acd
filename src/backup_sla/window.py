"""
Backup window calculation
Derives the absolute start/end timestamps of the nightly backup window
that the current run is evaluated against.
"""

import logging
import re
from datetime import datetime, time, timedelta

from src.backup_sla.models import BackupWindow

logger = logging.getLogger(__name__)

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class InvalidTimeFormat(ValueError):
    """Raised when a time-of-day setting is not HH:MM (24-hour)"""


def parse_time_of_day(value: str) -> time:
    """Parse an 'HH:MM' string into a time"""
    match = _TIME_OF_DAY.match(str(value).strip()) if value is not None else None
    if not match:
        raise InvalidTimeFormat(f"Invalid time of day '{value}', expected HH:MM (24-hour)")
    return time(int(match.group(1)), int(match.group(2)))


def compute_backup_window(now: datetime,
                          look_back_days: int = 1,
                          window_start: str = "20:00",
                          window_end: str = "07:00") -> BackupWindow:
    """
    Compute the backup window for a run started at `now`.

    The start is today's start time moved back `look_back_days` days. The end
    is today's end time, or yesterday's when today's has not happened yet.
    """
    if look_back_days < 0:
        raise ValueError(f"look_back_days must be >= 0, got {look_back_days}")

    start_tod = parse_time_of_day(window_start)
    end_tod = parse_time_of_day(window_end)

    start = datetime.combine(now.date(), start_tod) - timedelta(days=look_back_days)
    end = datetime.combine(now.date(), end_tod)
    if end > now:
        end -= timedelta(days=1)

    if start > end:
        logger.warning(f"Backup window start {start} is after its end {end}; no restore point can be in window")

    logger.info(f"Backup window: {start:%Y-%m-%d %H:%M} -> {end:%Y-%m-%d %H:%M}")
    return BackupWindow(start=start, end=end)
