"""Date and time helper functions for turnover scheduling."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return now_utc().date()


def date_only(value: date | datetime) -> date:
    """Strip the time of day; date-only matching keys on the calendar day."""

    if isinstance(value, datetime):
        return value.date()
    return value


def window_start(days_back: int, *, today: date | None = None) -> date:
    return (today or today_utc()) - timedelta(days=days_back)


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes read back from SQLite as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
