"""
Time window helpers.

A job computes its window once: either a rolling ``[now - hours, now]``
interval or whole calendar days ending yesterday in the configured zone.
Bounds are inclusive.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
from zoneinfo import ZoneInfo


WINDOW_MODES = ("calendar", "rolling")


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    date_key: str
    time_zone: str

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def date_key_in_zone(moment: datetime, time_zone: str) -> str:
    """Return the ``YYYY-MM-DD`` calendar date of an instant in the given zone."""
    return moment.astimezone(ZoneInfo(time_zone)).strftime("%Y-%m-%d")


def zoned_time_to_utc(
    date_key: str,
    time_zone: str,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
) -> datetime:
    """Convert a wall-clock time on a calendar date in a zone to an aware UTC datetime."""
    day = date.fromisoformat(date_key)
    local = datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=ZoneInfo(time_zone))
    return local.astimezone(timezone.utc)


def build_time_window(
    now: datetime,
    mode: Optional[str],
    hours: int,
    lookback_days: int,
    time_zone: str,
) -> TimeWindow:
    """
    Compute the collection window for a job.

    Args:
        now (datetime): Aware reference instant.
        mode (Optional[str]): "rolling" or "calendar" (anything else means calendar).
        hours (int): Rolling window length.
        lookback_days (int): Calendar days covered, ending yesterday.
        time_zone (str): IANA zone for calendar maths.

    Returns:
        TimeWindow: Inclusive start/end instants and the date key that names the window.
    """
    if mode == "rolling":
        start = now - timedelta(hours=max(1, hours))
        return TimeWindow(
            start=start,
            end=now,
            date_key=date_key_in_zone(now, time_zone),
            time_zone=time_zone,
        )

    days = max(1, int(lookback_days))
    end_date_key = date_key_in_zone(now - timedelta(days=1), time_zone)
    start_date = date.fromisoformat(end_date_key) - timedelta(days=days - 1)
    return TimeWindow(
        start=zoned_time_to_utc(start_date.isoformat(), time_zone, 0, 0, 0),
        end=zoned_time_to_utc(end_date_key, time_zone, 23, 59, 59),
        date_key=end_date_key,
        time_zone=time_zone,
    )


def parse_datetime(text: Optional[str]) -> Optional[datetime]:
    """
    Parse a feed or API timestamp (RFC 822 or ISO 8601).

    Naive values are taken as UTC.

    Returns:
        Optional[datetime]: Aware datetime, or None when the text is empty or unparseable.
    """
    if not text or not text.strip():
        return None
    value = text.strip()

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(moment: datetime) -> str:
    """Render an instant as a UTC ISO string with millisecond precision and a ``Z`` suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
