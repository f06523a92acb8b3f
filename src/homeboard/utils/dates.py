"""UTC timestamp helpers shared by the storage and analytics layers.

Timestamps are stored as ISO-8601 strings with a fixed microsecond precision
and a ``+00:00`` offset, so string comparison in SQL matches time order.
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_db(value: datetime | None) -> str | None:
    """Serialize a datetime for storage (naive values are treated as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Return the UTC interval ``[start, end)`` covering a calendar day in ``tz_name``."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


def local_today(tz_name: str, now: datetime | None = None) -> date:
    """The calendar date in ``tz_name`` at ``now`` (defaults to the current time)."""
    return (now or utc_now()).astimezone(ZoneInfo(tz_name)).date()
