"""Local-time helpers for the working-hours window and the midnight rollover."""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """
    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        msg = f"invalid timezone: {tz_name!r} (e.g. Australia/Adelaide)"
        raise ValueError(msg) from exc


def parse_hhmm(text: str) -> time:
    """Parse "HH:MM" into a time of day.

    Raises:
        ValueError: If the text is not a valid HH:MM value.
    """
    try:
        hh, mm = text.strip().split(":", 1)
        return time(int(hh), int(mm))
    except ValueError as exc:
        msg = f"expected HH:MM, got {text!r}"
        raise ValueError(msg) from exc


def epoch_ms_from_dt(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive is treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def dt_from_epoch_ms(epoch_ms: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=tz)


def next_midnight(now: datetime) -> datetime:
    """Return the next local midnight strictly after ``now``."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time(0, 0), tzinfo=now.tzinfo)


def ms_until(now: datetime, target: datetime) -> int:
    return max(0, epoch_ms_from_dt(target) - epoch_ms_from_dt(now))


def same_local_day(epoch_ms: int, now: datetime) -> bool:
    """True if ``epoch_ms`` falls on the same calendar day as ``now`` in its timezone.

    Timestamps outside the platform's representable range count as another day.
    """
    tz = now.tzinfo or UTC
    try:
        then = dt_from_epoch_ms(epoch_ms, tz)
    except (OverflowError, OSError, ValueError):
        return False
    return then.date() == now.date()
