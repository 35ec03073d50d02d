from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], int]

MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * MINUTE_MS


def now_millis() -> int:
    return int(time.time() * 1000)


def millis_to_datetime(millis: int, tzinfo=None) -> datetime:
    moment = datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    if tzinfo:
        return moment.astimezone(tzinfo)
    return moment.astimezone()


def datetime_to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return int(round(dt.timestamp() * 1000))


def next_occurrence_millis(hour: int, minute: int, now_ms: int, tzinfo=None) -> int:
    """Epoch millis of the next HH:MM wall-clock time strictly after ``now_ms``."""
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day {hour}:{minute}")
    now = millis_to_datetime(now_ms, tzinfo)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if datetime_to_millis(target) <= now_ms:
        target = target + timedelta(days=1)
    return datetime_to_millis(target)


def format_millis(millis: Optional[int], tzinfo=None) -> str:
    if millis is None:
        return "n/a"
    return millis_to_datetime(millis, tzinfo).strftime("%Y-%m-%d %H:%M:%S")
