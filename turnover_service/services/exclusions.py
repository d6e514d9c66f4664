"""Append-only ledger of slots the calendar sync must not recreate."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import BookingSource, ExclusionReason, SyncExclusion
from .time_utils import date_only


def record_exclusion(
    session: Session,
    *,
    property_id: str,
    original_date: date | datetime,
    booking_source: BookingSource,
    reason: ExclusionReason,
    cleaning_id: int | None,
    new_date: date | datetime | None = None,
    created_by: str | None = None,
) -> SyncExclusion:
    """Append a tombstone for (property, date, source).

    The row is flushed but not committed so the caller can commit it together
    with the cleaning change it protects.
    """

    if reason == ExclusionReason.MOVED and new_date is None:
        raise ValueError("moved exclusions require new_date")

    entry = SyncExclusion(
        property_id=property_id,
        original_date=date_only(original_date),
        booking_source=booking_source,
        reason=reason,
        new_date=date_only(new_date) if new_date is not None else None,
        cleaning_id=cleaning_id,
        created_by=created_by,
    )
    session.add(entry)
    session.flush()
    return entry


def is_excluded(
    session: Session,
    property_id: str,
    day: date | datetime,
    booking_source: BookingSource,
) -> bool:
    found = session.execute(
        select(SyncExclusion.id)
        .where(
            SyncExclusion.property_id == property_id,
            SyncExclusion.original_date == date_only(day),
            SyncExclusion.booking_source == booking_source,
        )
        .limit(1)
    ).scalar_one_or_none()
    return found is not None


def list_exclusions(
    session: Session,
    *,
    property_id: str | None = None,
    limit: int = 200,
) -> list[SyncExclusion]:
    query = select(SyncExclusion)
    if property_id:
        query = query.where(SyncExclusion.property_id == property_id)
    return session.execute(
        query.order_by(SyncExclusion.created_at.desc(), SyncExclusion.id.desc()).limit(limit)
    ).scalars().all()
