"""Event status derived from the clock and the stored cancel flag."""

from __future__ import annotations

from datetime import datetime, timezone

from .models import EventStatus


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite drops tzinfo) and convert aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def derive_status(
    *,
    start_time: datetime,
    end_time: datetime,
    cancelled_at: datetime | None,
    now: datetime,
) -> EventStatus:
    if cancelled_at is not None:
        return EventStatus.CANCELLED
    now = as_utc(now)
    if now < as_utc(start_time):
        return EventStatus.SCHEDULED
    if now <= as_utc(end_time):
        return EventStatus.LIVE
    return EventStatus.ENDED


__all__ = ["as_utc", "derive_status"]
