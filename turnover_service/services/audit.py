"""Consistency audit: duplicates, orphans, ghost orders, stale cleanings and missing links."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import CANCELLABLE_ORDER_STATUSES, Booking, Cleaning, CleaningStatus, LinenOrder, OrderStatus, Property
from ..settings import settings
from .access import require_admin
from .activity import log_event
from .cascade import cancel_cleaning
from .linen import backfill_missing_orders, classify_ghost, load_price_list, order_total
from .sync import find_stale_cleanings
from .time_utils import as_aware, now_utc

_LOGGER = logging.getLogger(__name__)

# the most advanced order of a duplicate cluster is kept
ORDER_KEEP_PRIORITY = {
    OrderStatus.COMPLETED: 4,
    OrderStatus.DELIVERED: 3,
    OrderStatus.IN_TRANSIT: 2,
    OrderStatus.ASSIGNED: 1,
    OrderStatus.PENDING: 0,
}


def _filtered(query, model, *, property_id: str | None, date_from: date | None, date_to: date | None):
    if property_id:
        query = query.where(model.property_id == property_id)
    if date_from is not None:
        query = query.where(model.scheduled_date >= date_from)
    if date_to is not None:
        query = query.where(model.scheduled_date <= date_to)
    return query


def _repair(session: Session, *, action: str, actor_user_id: str | None, payload: dict) -> None:
    log_event(session, domain="audit", action=action, actor_user_id_raw=actor_user_id, payload=payload)
    session.commit()
    _LOGGER.info("Audit repair %s: %s", action, payload)


def find_duplicate_clusters(
    session: Session,
    *,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    race_window_seconds: int | None = None,
) -> list[dict]:
    """Group active cleanings by slot; every group above one is reported, never merged."""

    window = settings.duplicate_race_window_seconds if race_window_seconds is None else race_window_seconds
    slots_query = _filtered(
        select(Cleaning.property_id, Cleaning.scheduled_date)
        .where(Cleaning.status != CleaningStatus.CANCELLED),
        Cleaning,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    slots = session.execute(
        slots_query.group_by(Cleaning.property_id, Cleaning.scheduled_date)
        .having(func.count(Cleaning.id) > 1)
        .order_by(Cleaning.property_id.asc(), Cleaning.scheduled_date.asc())
    ).all()

    clusters = []
    for slot_property_id, slot_date in slots:
        members = session.execute(
            select(Cleaning)
            .where(
                Cleaning.property_id == slot_property_id,
                Cleaning.scheduled_date == slot_date,
                Cleaning.status != CleaningStatus.CANCELLED,
            )
            .order_by(Cleaning.created_at.asc(), Cleaning.id.asc())
        ).scalars().all()

        booking_counts = Counter(row.booking_id for row in members if row.booking_id is not None)
        sources = {row.booking_source for row in members}
        created = [as_aware(row.created_at) for row in members]
        spread = (max(created) - min(created)).total_seconds()
        clusters.append(
            {
                "property_id": slot_property_id,
                "scheduled_date": slot_date,
                "size": len(members),
                "cleaning_ids": [row.id for row in members],
                "statuses": [row.status.value for row in members],
                "shared_booking_id": any(count > 1 for count in booking_counts.values()),
                "shared_source": len(sources) == 1 and None not in sources,
                "created_spread_seconds": spread,
                "possible_race": spread <= window,
            }
        )
    return clusters


def find_orphans(session: Session, *, property_id: str | None = None) -> dict[str, list]:
    known = select(Property.id)
    orphans = {}
    for key, model in (("cleanings", Cleaning), ("orders", LinenOrder), ("bookings", Booking)):
        query = select(model).where(model.property_id.not_in(known))
        if property_id:
            query = query.where(model.property_id == property_id)
        orphans[key] = session.execute(query.order_by(model.id.asc())).scalars().all()
    return orphans


def find_broken_links(session: Session, *, property_id: str | None = None) -> list[LinenOrder]:
    query = select(LinenOrder).where(
        LinenOrder.cleaning_id.is_not(None),
        LinenOrder.cleaning_id.not_in(select(Cleaning.id)),
    )
    if property_id:
        query = query.where(LinenOrder.property_id == property_id)
    return session.execute(query.order_by(LinenOrder.id.asc())).scalars().all()


def find_ghost_orders(
    session: Session,
    *,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    price_list: dict[str, float] | None = None,
) -> dict:
    prices = price_list if price_list is not None else load_price_list(session)
    query = _filtered(
        select(LinenOrder).where(LinenOrder.status != OrderStatus.CANCELLED),
        LinenOrder,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    entries = []
    by_reason: Counter = Counter()
    by_status: Counter = Counter()
    by_property: Counter = Counter()
    for order in session.execute(query.order_by(LinenOrder.id.asc())).scalars():
        reason = classify_ghost(order, prices)
        if reason is None:
            continue
        entries.append(
            {
                "order_id": order.id,
                "property_id": order.property_id,
                "cleaning_id": order.cleaning_id,
                "scheduled_date": order.scheduled_date,
                "status": order.status.value,
                "reason": reason.value,
                "item_count": len(order.items or []),
            }
        )
        by_reason[reason.value] += 1
        by_status[order.status.value] += 1
        by_property[order.property_id] += 1
    return {
        "orders": entries,
        "by_reason": dict(by_reason),
        "by_status": dict(by_status),
        "by_property": dict(by_property),
    }


def _order_cluster(orders: list[LinenOrder], *, cleaning_id: int | None, property_id: str, day: date) -> dict:
    keep = min(
        orders,
        key=lambda order: (-ORDER_KEEP_PRIORITY.get(order.status, 0), order.cleaning_id != cleaning_id, order.id),
    )
    return {
        "cleaning_id": cleaning_id,
        "property_id": property_id,
        "scheduled_date": day,
        "order_ids": [order.id for order in orders],
        "statuses": [order.status.value for order in orders],
        "keep_order_id": keep.id,
        "drop_order_ids": [order.id for order in orders if order.id != keep.id],
    }


def find_duplicate_orders(
    session: Session,
    *,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """Clusters of live orders sharing one cleaning, or one slot when unbound."""

    live_query = select(LinenOrder).where(LinenOrder.status != OrderStatus.CANCELLED)
    if property_id:
        live_query = live_query.where(LinenOrder.property_id == property_id)
    by_cleaning: dict[int, list[LinenOrder]] = defaultdict(list)
    unbound: dict[tuple[str, date], list[LinenOrder]] = defaultdict(list)
    for order in session.execute(live_query.order_by(LinenOrder.id.asc())).scalars():
        if order.cleaning_id is None:
            unbound[(order.property_id, order.scheduled_date)].append(order)
        else:
            by_cleaning[order.cleaning_id].append(order)

    cleanings = session.execute(
        _filtered(
            select(Cleaning).where(Cleaning.status != CleaningStatus.CANCELLED),
            Cleaning,
            property_id=property_id,
            date_from=date_from,
            date_to=date_to,
        ).order_by(Cleaning.id.asc())
    ).scalars().all()

    clusters = []
    for cleaning in cleanings:
        live = by_cleaning.get(cleaning.id, []) + unbound.pop((cleaning.property_id, cleaning.scheduled_date), [])
        if len(live) > 1:
            clusters.append(
                _order_cluster(
                    live,
                    cleaning_id=cleaning.id,
                    property_id=cleaning.property_id,
                    day=cleaning.scheduled_date,
                )
            )

    for (slot_property_id, day), orders in sorted(unbound.items()):
        if len(orders) < 2:
            continue
        if (date_from is not None and day < date_from) or (date_to is not None and day > date_to):
            continue
        clusters.append(_order_cluster(orders, cleaning_id=None, property_id=slot_property_id, day=day))
    return clusters


def resolve_duplicate_orders(session: Session, *, actor_user_id: str | None, property_id: str | None = None) -> dict:
    """Cancel the surplus orders of every duplicate cluster, keeping the most advanced one.

    Surplus orders already past ASSIGNED cannot be cancelled and are reported
    as untouched.
    """

    actor = require_admin(session, actor_user_id)
    outcome: dict = {"clusters": 0, "cancelled": [], "untouched": []}
    for cluster in find_duplicate_orders(session, property_id=property_id):
        outcome["clusters"] += 1
        for order_id in cluster["drop_order_ids"]:
            order = session.get(LinenOrder, order_id)
            if order is None or order.status not in CANCELLABLE_ORDER_STATUSES:
                outcome["untouched"].append(order_id)
                continue
            before = {"status": order.status.value, "cleaning_id": order.cleaning_id}
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = now_utc()
            order.cancel_reason = f"duplicate of order {cluster['keep_order_id']}"
            _repair(
                session,
                action="duplicate_order_cancelled",
                actor_user_id=actor.id,
                payload={
                    "order_id": order_id,
                    "kept_order_id": cluster["keep_order_id"],
                    "before": before,
                    "after": {"status": OrderStatus.CANCELLED.value},
                },
            )
            outcome["cancelled"].append(order_id)
    return outcome


def cancel_stale_cleanings(
    session: Session,
    *,
    actor_user_id: str | None,
    cleaning_ids: list[int] | None = None,
    property_id: str | None = None,
    delete_completely: bool = False,
) -> dict:
    """Send cleanings whose booking vanished or moved through the admin cancel path.

    Ids that no longer classify as stale are skipped and reported.
    """

    actor = require_admin(session, actor_user_id)
    stale = {entry["cleaning_id"]: entry for entry in find_stale_cleanings(session, property_id=property_id)}
    targets = list(stale) if cleaning_ids is None else cleaning_ids

    outcome: dict = {"cancelled": [], "deleted": [], "not_stale": [], "orders_failed": 0, "notifications": []}
    for cleaning_id in targets:
        entry = stale.get(cleaning_id)
        if entry is None:
            outcome["not_stale"].append(cleaning_id)
            continue
        if entry["reason"] == "booking_missing":
            reason = "booking no longer in the feed"
        else:
            reason = f"booking now checks out on {entry['booking_check_out'].isoformat()}"
        result = cancel_cleaning(
            session,
            cleaning_id,
            reason=reason,
            actor_user_id=actor.id,
            delete_completely=delete_completely,
        )
        outcome["deleted" if result["deleted"] else "cancelled"].append(cleaning_id)
        outcome["orders_failed"] += result["orders_failed"]
        outcome["notifications"].extend(result["notifications"])
    return outcome


def _describe(row) -> dict:
    payload = {"id": row.id, "property_id": row.property_id}
    for attr in ("scheduled_date", "status", "cleaning_id", "check_out", "external_uid"):
        value = getattr(row, attr, None)
        if value is None:
            continue
        payload[attr] = value.value if hasattr(value, "value") else str(value)
    return payload


def run_audit(
    session: Session,
    *,
    dry_run: bool = True,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    days_back: int | None = None,
    actor_user_id: str | None = None,
) -> dict:
    """Scan every store for drift; repairs are applied only when dry_run is False."""

    days = settings.backfill_days_back if days_back is None else days_back
    report: dict = {"dry_run": dry_run, "generated_at": now_utc()}

    orphans = find_orphans(session, property_id=property_id)
    report["orphans"] = {key: [_describe(row) for row in rows] for key, rows in orphans.items()}
    if not dry_run:
        for key, rows in orphans.items():
            for row in rows:
                before = _describe(row)
                session.delete(row)
                _repair(session, action=f"orphan_{key}_deleted", actor_user_id=actor_user_id, payload={"before": before, "after": None})

    broken = find_broken_links(session, property_id=property_id)
    report["broken_links"] = [{"order_id": row.id, "cleaning_id": row.cleaning_id} for row in broken]
    if not dry_run:
        for order in broken:
            missing_id = order.cleaning_id
            order.cleaning_id = None
            note = f"unlinked from missing cleaning {missing_id}"
            order.notes = f"{order.notes}\n{note}" if order.notes else note
            _repair(
                session,
                action="order_unlinked",
                actor_user_id=actor_user_id,
                payload={"order_id": order.id, "before": {"cleaning_id": missing_id}, "after": {"cleaning_id": None}},
            )

    report["duplicates"] = find_duplicate_clusters(
        session,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    report["ghost_orders"] = find_ghost_orders(
        session,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    report["duplicate_orders"] = find_duplicate_orders(
        session,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    report["stale_cleanings"] = [
        entry
        for entry in find_stale_cleanings(session, property_id=property_id)
        if (date_from is None or entry["scheduled_date"] >= date_from)
        and (date_to is None or entry["scheduled_date"] <= date_to)
    ]
    report["missing_orders"] = backfill_missing_orders(
        session,
        days_back=days,
        dry_run=dry_run,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    report["price_backfill"] = backfill_prices(
        session,
        dry_run=dry_run,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
        actor_user_id=actor_user_id,
    )

    report["summary"] = {
        "orphans": sum(len(rows) for rows in report["orphans"].values()),
        "broken_links": len(report["broken_links"]),
        "duplicate_clusters": len(report["duplicates"]),
        "ghost_orders": len(report["ghost_orders"]["orders"]),
        "duplicate_orders": len(report["duplicate_orders"]),
        "stale_cleanings": len(report["stale_cleanings"]),
        "missing_orders": report["missing_orders"]["created"],
        "prices_backfilled": len(report["price_backfill"]),
    }
    if not dry_run:
        log_event(
            session,
            domain="audit",
            action="audit_run",
            actor_user_id_raw=actor_user_id,
            payload={"summary": report["summary"], "property_id": property_id},
        )
        session.commit()
    _LOGGER.info("Audit finished (dry_run=%s): %s", dry_run, report["summary"])
    return report


def backfill_prices(
    session: Session,
    *,
    dry_run: bool,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    actor_user_id: str | None = None,
) -> list[dict]:
    query = _filtered(
        select(Cleaning, Property)
        .join(Property, Property.id == Cleaning.property_id)
        .where(
            Cleaning.status != CleaningStatus.CANCELLED,
            (Cleaning.price.is_(None)) | (Cleaning.price <= 0),
            Property.cleaning_base_price > 0,
        ),
        Cleaning,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )
    entries = []
    for cleaning, prop in session.execute(query.order_by(Cleaning.id.asc())).all():
        entry = {"cleaning_id": cleaning.id, "before": cleaning.price, "after": prop.cleaning_base_price}
        entries.append(entry)
        if not dry_run:
            cleaning.price = prop.cleaning_base_price
            _repair(session, action="price_backfilled", actor_user_id=actor_user_id, payload=entry)
    return entries


def purge_ghost_orders(session: Session, order_ids: list[int], *, actor_user_id: str | None) -> dict:
    """Delete the given orders if, and only if, they still classify as ghosts."""

    actor = require_admin(session, actor_user_id)
    prices = load_price_list(session)
    outcome: dict[str, list] = defaultdict(list)
    for order_id in order_ids:
        order = session.get(LinenOrder, order_id)
        if order is None:
            outcome["not_found"].append(order_id)
            continue
        reason = classify_ghost(order, prices)
        if reason is None:
            outcome["not_ghost"].append(order_id)
            continue
        before = {
            **_describe(order),
            "reason": reason.value,
            "items": list(order.items or []),
            "total": order_total(order, prices),
        }
        session.delete(order)
        _repair(session, action="ghost_order_deleted", actor_user_id=actor.id, payload={"before": before, "after": None})
        outcome["deleted"].append(order_id)
    return {key: outcome.get(key, []) for key in ("deleted", "not_ghost", "not_found")}
