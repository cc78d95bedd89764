"""General utility helpers shared across modules."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from .errors import InvalidRangeError

TimeInput = datetime | date | int | float | str

_SECONDS_PER_DAY = 86400


def to_utc_aware(value: datetime) -> datetime:
    """Return a UTC-aware datetime, treating naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        if value.endswith("Z"):
            value = value.replace("Z", "+00:00")
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def to_timestamp(value: TimeInput) -> int:
    """Coerce datetimes, dates, ISO strings and numbers to unix seconds."""

    if isinstance(value, bool):
        raise InvalidRangeError(f"Unsupported time value: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(to_utc_aware(value).timestamp())
    if isinstance(value, date):
        return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        parsed = parse_iso_datetime(stripped)
        if parsed is None:
            raise InvalidRangeError(f"Unparseable time value: {value!r}")
        return int(to_utc_aware(parsed).timestamp())
    raise InvalidRangeError(f"Unsupported time value: {value!r}")


def to_day(value: TimeInput) -> date:
    """Return the UTC calendar day containing ``value``."""

    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    ts = to_timestamp(value)
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def day_bounds(day: TimeInput) -> tuple[int, int]:
    """Return ``[start, end)`` unix seconds of the UTC day."""

    start = to_timestamp(to_day(day))
    return start, start + _SECONDS_PER_DAY


def to_seconds(value: int | float | timedelta) -> int:
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return int(value)


def humanize_duration(seconds: int) -> str:
    """Format a chunk size as ``"1 day"``, ``"6 hours"`` and so on."""

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


def utc_now_timestamp() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def format_timestamp(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
