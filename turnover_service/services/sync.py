"""Booking feed reconciliation into cleanings."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Booking, BookingSource, Cleaning, CleaningStatus, Property
from ..schemas import BookingFeedItem
from .activity import log_event
from .exclusions import is_excluded
from .linen import DEFAULT_GUESTS, ensure_order, load_price_list
from .time_utils import date_only, today_utc

_LOGGER = logging.getLogger(__name__)

DEFAULT_CHECKOUT_TIME = "10:00"


def _empty_result() -> dict:
    return {
        "created": 0,
        "skipped": 0,
        "updated": 0,
        "excluded": 0,
        "orders_created": 0,
        "bookings_created": 0,
        "bookings_removed": 0,
        "stale_cleanings": 0,
        "errors": 0,
    }


def _find_booking(session: Session, item: BookingFeedItem, check_in: date, check_out: date) -> Booking | None:
    if item.external_uid:
        booking = session.execute(
            select(Booking)
            .where(
                Booking.property_id == item.property_id,
                Booking.source == item.source,
                Booking.external_uid == item.external_uid,
            )
            .order_by(Booking.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if booking is not None:
            return booking

    return session.execute(
        select(Booking)
        .where(
            Booking.property_id == item.property_id,
            Booking.source == item.source,
            Booking.check_in == check_in,
            Booking.check_out == check_out,
        )
        .order_by(Booking.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def upsert_booking(session: Session, item: BookingFeedItem) -> tuple[Booking, str]:
    """Insert or refresh a booking; returns the row and created/updated/unchanged."""

    check_in = date_only(item.check_in)
    check_out = date_only(item.check_out)
    booking = _find_booking(session, item, check_in, check_out)
    if booking is None:
        booking = Booking(
            property_id=item.property_id,
            source=item.source,
            external_uid=item.external_uid,
            check_in=check_in,
            check_out=check_out,
            guests_count=item.guests_count,
        )
        session.add(booking)
        session.flush()
        return booking, "created"

    changed = False
    if booking.check_in != check_in or booking.check_out != check_out:
        booking.check_in = check_in
        booking.check_out = check_out
        changed = True
    if item.guests_count is not None and booking.guests_count != item.guests_count:
        booking.guests_count = item.guests_count
        changed = True
    if item.external_uid and booking.external_uid is None:
        booking.external_uid = item.external_uid
        changed = True
    if changed:
        session.flush()
    return booking, "updated" if changed else "unchanged"


def active_cleaning_for_slot(session: Session, property_id: str, day: date) -> Cleaning | None:
    return session.execute(
        select(Cleaning)
        .where(
            Cleaning.property_id == property_id,
            Cleaning.scheduled_date == day,
            Cleaning.status != CleaningStatus.CANCELLED,
        )
        .order_by(Cleaning.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def _reconcile_one(
    session: Session,
    item: BookingFeedItem,
    *,
    price_list: dict[str, float],
    result: dict,
) -> None:
    prop = session.get(Property, item.property_id)
    if prop is None or not prop.active:
        result["skipped"] += 1
        return

    booking, booking_outcome = upsert_booking(session, item)
    if booking_outcome == "created":
        result["bookings_created"] += 1
    elif booking_outcome == "updated":
        result["updated"] += 1

    day = date_only(item.check_out)
    if is_excluded(session, item.property_id, day, item.source):
        result["skipped"] += 1
        result["excluded"] += 1
        return

    if active_cleaning_for_slot(session, item.property_id, day) is not None:
        result["skipped"] += 1
        return

    cleaning = Cleaning(
        property_id=item.property_id,
        scheduled_date=day,
        scheduled_time=prop.checkout_time or DEFAULT_CHECKOUT_TIME,
        status=CleaningStatus.SCHEDULED,
        booking_source=item.source,
        booking_id=booking.id,
        operators=[],
        guests_count=prop.max_guests or DEFAULT_GUESTS,
        price=prop.cleaning_base_price,
    )
    session.add(cleaning)
    session.flush()
    result["created"] += 1

    if ensure_order(session, cleaning, price_list=price_list) is not None:
        result["orders_created"] += 1


STALE_CLEANING_STATUSES = (CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED)


def find_stale_cleanings(
    session: Session,
    *,
    property_id: str | None = None,
    property_ids: list[str] | None = None,
) -> list[dict]:
    """Feed-created cleanings whose booking vanished or now checks out on another day.

    Only untouched SCHEDULED/ASSIGNED rows qualify; resolving them is left to
    an admin through the cancel path.
    """

    query = (
        select(Cleaning, Booking)
        .outerjoin(Booking, Booking.id == Cleaning.booking_id)
        .where(
            Cleaning.booking_id.is_not(None),
            Cleaning.manually_modified.is_(False),
            Cleaning.status.in_(STALE_CLEANING_STATUSES),
        )
    )
    if property_id:
        query = query.where(Cleaning.property_id == property_id)
    if property_ids is not None:
        query = query.where(Cleaning.property_id.in_(property_ids))

    stale = []
    for cleaning, booking in session.execute(query.order_by(Cleaning.scheduled_date.asc(), Cleaning.id.asc())).all():
        if booking is None:
            reason = "booking_missing"
        elif booking.check_out != cleaning.scheduled_date:
            reason = "checkout_changed"
        else:
            continue
        stale.append(
            {
                "cleaning_id": cleaning.id,
                "property_id": cleaning.property_id,
                "scheduled_date": cleaning.scheduled_date,
                "status": cleaning.status.value,
                "booking_id": cleaning.booking_id,
                "booking_check_out": booking.check_out if booking is not None else None,
                "reason": reason,
            }
        )
    return stale


def _prune_missing_bookings(session: Session, seen: dict[tuple[str, BookingSource], set[str]]) -> int:
    """Delete future bookings that disappeared from the feed; cleanings are left alone."""

    removed = 0
    today = today_utc()
    for (property_id, source), uids in seen.items():
        query = delete(Booking).where(
            Booking.property_id == property_id,
            Booking.source == source,
            Booking.check_out >= today,
            Booking.external_uid.is_not(None),
        )
        if uids:
            query = query.where(Booking.external_uid.not_in(uids))
        removed += session.execute(query).rowcount or 0
    return removed


def reconcile(
    session: Session,
    items: list[BookingFeedItem],
    *,
    prune_missing: bool = False,
    actor_user_id: str | None = None,
) -> dict:
    """Turn feed checkouts into cleanings without resurrecting excluded slots.

    Every tuple is committed on its own so one bad row cannot undo the rest of
    the pass.
    """

    result = _empty_result()
    price_list = load_price_list(session)
    seen: dict[tuple[str, BookingSource], set[str]] = {}

    for item in items:
        key = (item.property_id, item.source)
        seen.setdefault(key, set())
        if item.external_uid:
            seen[key].add(item.external_uid)
        counts = dict(result)
        try:
            _reconcile_one(session, item, price_list=price_list, result=result)
            session.commit()
        except (SQLAlchemyError, ValueError, TypeError):
            session.rollback()
            result.update(counts)
            result["errors"] += 1
            _LOGGER.warning(
                "Failed to reconcile booking %s for property %s",
                item.external_uid,
                item.property_id,
                exc_info=True,
            )

    if prune_missing and seen:
        result["bookings_removed"] = _prune_missing_bookings(session, seen)

    if items:
        touched = sorted({item.property_id for item in items})
        result["stale_cleanings"] = len(find_stale_cleanings(session, property_ids=touched))
        if result["stale_cleanings"]:
            _LOGGER.warning(
                "%s cleanings no longer match their booking; they are listed in the audit report",
                result["stale_cleanings"],
            )

    log_event(
        session,
        domain="sync",
        action="reconcile",
        actor_user_id_raw=actor_user_id,
        payload={**result, "tuples": len(items)},
    )
    session.commit()
    _LOGGER.info(
        "Reconciled %s bookings: %s created, %s skipped (%s excluded), %s updated, %s errors",
        len(items),
        result["created"],
        result["skipped"],
        result["excluded"],
        result["updated"],
        result["errors"],
    )
    return result
