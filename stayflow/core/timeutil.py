from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from stayflow.core.config import settings


@lru_cache(maxsize=64)
def zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(settings.default_timezone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(tz_name: str | None = None, *, now: datetime | None = None) -> date:
    return (now or utc_now()).astimezone(zone(tz_name)).date()


def parse_date(value: date | str | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _clock(raw: str) -> time:
    parts = raw.split(":")
    second = int(parts[2][:2]) if len(parts) > 2 else 0
    return time(int(parts[0]), int(parts[1]) if len(parts) > 1 else 0, second)


def parse_clock(value: time | str | None, default: str = "00:00") -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``, falling back to ``default`` when empty or malformed."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    for raw in (str(value or "").strip(), default):
        try:
            return _clock(raw)
        except (ValueError, IndexError):
            continue
    raise ValueError(f"Invalid clock value: {value!r}")


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def at_local(day: date, clock: time, tz_name: str | None) -> datetime:
    return datetime.combine(day, clock, tzinfo=zone(tz_name))


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
