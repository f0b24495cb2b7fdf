"""Time helpers shared by the yard services."""
from datetime import datetime, date, time, timedelta, timezone
from typing import Callable, Tuple
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def local_datetime(day: date, hour: int, tz: ZoneInfo) -> datetime:
    """Aware datetime for hour:00 on day in tz (hour 24 is next midnight)."""
    return datetime.combine(day, time(0), tzinfo=tz) + timedelta(hours=hour)


def local_day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """[start, end) of a calendar day in tz, as UTC datetimes."""
    start = datetime.combine(day, time(0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    return moment.astimezone(tz).date()
