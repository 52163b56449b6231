from __future__ import annotations

from datetime import UTC, datetime, timedelta

INTERVAL_HOURS = 6
KEY_FORMAT = "%Y%m%d%H"


def now_utc() -> datetime:
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def truncate(dt: datetime, interval_hours: int = INTERVAL_HOURS) -> datetime:
    """Floor ``dt`` onto the publication grid. Never rounds up."""
    dt = to_utc(dt)
    rounded_hour = (dt.hour // interval_hours) * interval_hours
    return datetime(dt.year, dt.month, dt.day, rounded_hour, tzinfo=UTC)


def format_key(dt: datetime, interval_hours: int = INTERVAL_HOURS) -> str:
    return truncate(dt, interval_hours).strftime(KEY_FORMAT)


def parse_key(key: str) -> datetime:
    if len(key) != 10 or not key.isdigit():
        raise ValueError(f"Malformed snapshot key: {key!r}")
    return datetime.strptime(key, KEY_FORMAT).replace(tzinfo=UTC)


def step(dt: datetime, count: int = 1, interval_hours: int = INTERVAL_HOURS) -> datetime:
    return dt + timedelta(hours=interval_hours * count)


def latest_available(now: datetime, interval_hours: int = INTERVAL_HOURS) -> datetime:
    # The provider publishes cycle T roughly one interval after T.
    return truncate(now, interval_hours) - timedelta(hours=interval_hours)
