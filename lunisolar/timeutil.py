"""Helpers for UTC instants and UTC calendar days."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any

ONE_DAY = timedelta(days=1)


def require_utc(instant: datetime, name: str = "instant") -> datetime:
    """Return *instant* normalized to UTC; naive datetimes are rejected."""

    if not isinstance(instant, datetime):
        raise TypeError(f"{name} must be a datetime, got {type(instant).__name__}")
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    return instant.astimezone(UTC)


def utc_day(instant: datetime) -> date:
    """Truncate *instant* to its UTC calendar day."""

    return require_utc(instant).date()


def day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


def days_between(start: datetime, end: datetime) -> int:
    """Number of UTC calendar days from ``utc_day(start)`` to ``utc_day(end)``."""

    return (utc_day(end) - utc_day(start)).days


def elapsed_days(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400.0


def midpoint(lo: datetime, hi: datetime) -> datetime:
    return lo + (hi - lo) / 2


def parse_instant(value: Any) -> datetime:
    """Parse an event date into a UTC instant.

    Accepts aware datetimes, plain dates (taken as UTC midnight) and ISO-8601
    strings. A trailing ``Z`` is understood and strings without an offset are
    read as UTC. Anything else raises :class:`ValueError`.
    """

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return day_start(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Unparseable date: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Unparseable date: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_utc(instant: datetime) -> str:
    return require_utc(instant).isoformat().replace("+00:00", "Z")
