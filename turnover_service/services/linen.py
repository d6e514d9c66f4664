"""Linen order linkage, manifests and order pricing."""

from __future__ import annotations

import logging
import math
from datetime import date
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import (
    ACTIVE_CLEANING_STATUSES,
    Cleaning,
    CleaningStatus,
    InventoryItem,
    LinenOrder,
    OrderStatus,
    Property,
)
from .activity import log_event
from .exclusions import is_excluded
from .time_utils import window_start

_LOGGER = logging.getLogger(__name__)

DEFAULT_GUESTS = 2
MANIFEST_CATEGORIES = ("bl", "ba", "ki")


class GhostReason(str, Enum):
    NO_ITEMS = "no_items"
    ALL_ITEMS_ZERO_PRICE = "all_items_zero_price"
    CALCULATED_ZERO = "calculated_zero"


def load_price_list(session: Session) -> dict[str, float]:
    rows = session.execute(select(InventoryItem)).scalars().all()
    return {row.id: float(row.unit_price or 0) for row in rows}


def _add_quantities(target: dict[str, int], section) -> None:
    if not isinstance(section, dict):
        return
    for item_id, qty in section.items():
        try:
            amount = int(qty)
        except (TypeError, ValueError):
            continue
        target[str(item_id)] = target.get(str(item_id), 0) + amount


def configured_manifest(service_configs, guests: int) -> dict[str, int]:
    """Read the bill of materials configured for a guest count.

    Malformed sections are ignored, so a bad config degrades to the fallback
    manifest instead of failing the caller.
    """

    if not isinstance(service_configs, dict):
        return {}
    config = service_configs.get(str(guests))
    if not isinstance(config, dict):
        return {}
    totals: dict[str, int] = {}
    beds = config.get("bl")
    if isinstance(beds, dict):
        for bed in beds.values():
            _add_quantities(totals, bed)
    _add_quantities(totals, config.get("ba"))
    _add_quantities(totals, config.get("ki"))
    return {item_id: qty for item_id, qty in totals.items() if qty > 0}


def fallback_manifest(guests: int, bedrooms: int | None, bathrooms: int | None) -> dict[str, int]:
    """Formulaic manifest used when nothing is configured for the guest count."""

    bedrooms = bedrooms or 1
    bathrooms = bathrooms or 1
    doubles = min(bedrooms, math.ceil(guests / 2))
    singles = max(0, guests - 2 * doubles)

    manifest = {
        "double_sheet": 3 * doubles,
        "single_sheet": 3 * singles,
        "pillowcase": 2 * doubles + singles,
        "shower_towel": guests,
        "face_towel": guests,
        "bidet_towel": guests,
        "bath_mat": bathrooms,
    }
    return {item_id: qty for item_id, qty in manifest.items() if qty > 0}


def build_manifest(prop: Property, guests: int) -> dict[str, int]:
    manifest = configured_manifest(prop.service_configs, guests)
    if manifest:
        return manifest
    return fallback_manifest(guests, prop.bedrooms, prop.bathrooms)


def effective_unit_price(item: dict, price_list: dict[str, float]) -> float:
    if item.get("unit_price") is not None:
        return float(item["unit_price"])
    return float(price_list.get(str(item.get("item_id")), 0))


def _quantity(item: dict) -> int:
    qty = item.get("quantity")
    return 1 if qty is None else int(qty)


def items_total(items: list[dict], price_list: dict[str, float]) -> float:
    return round(sum(_quantity(item) * effective_unit_price(item, price_list) for item in items), 2)


def order_total(order: LinenOrder, price_list: dict[str, float]) -> float:
    if order.total_price_override is not None:
        return float(order.total_price_override)
    return items_total(order.items or [], price_list)


def classify_ghost(order: LinenOrder, price_list: dict[str, float]) -> GhostReason | None:
    """Return why an order is a ghost, or None when it carries a real total."""

    if order.total_price_override is not None and order.total_price_override > 0:
        return None
    items = order.items or []
    if not items:
        return GhostReason.NO_ITEMS
    if all(effective_unit_price(item, price_list) == 0 for item in items):
        return GhostReason.ALL_ITEMS_ZERO_PRICE
    if order_total(order, price_list) <= 0:
        return GhostReason.CALCULATED_ZERO
    return None


def _prefer_active(orders: list[LinenOrder]) -> LinenOrder | None:
    for order in orders:
        if order.status != OrderStatus.CANCELLED:
            return order
    return orders[0] if orders else None


def bound_orders(session: Session, cleaning: Cleaning, *, on_date: date | None = None) -> list[LinenOrder]:
    """Orders bound by id, plus unbound legacy rows on the cleaning's slot."""

    day = on_date or cleaning.scheduled_date
    by_id = session.execute(
        select(LinenOrder).where(LinenOrder.cleaning_id == cleaning.id).order_by(LinenOrder.id.asc())
    ).scalars().all()
    legacy = session.execute(
        select(LinenOrder)
        .where(
            LinenOrder.cleaning_id.is_(None),
            LinenOrder.property_id == cleaning.property_id,
            LinenOrder.scheduled_date == day,
        )
        .order_by(LinenOrder.id.asc())
    ).scalars().all()
    return list(by_id) + list(legacy)


def find_matching_order(session: Session, cleaning: Cleaning) -> tuple[LinenOrder | None, bool]:
    """Return the matching order and whether it was found by the legacy slot fallback."""

    by_id = session.execute(
        select(LinenOrder).where(LinenOrder.cleaning_id == cleaning.id).order_by(LinenOrder.id.asc())
    ).scalars().all()
    match = _prefer_active(list(by_id))
    if match is not None:
        return match, False

    legacy = session.execute(
        select(LinenOrder)
        .where(
            LinenOrder.cleaning_id.is_(None),
            LinenOrder.property_id == cleaning.property_id,
            LinenOrder.scheduled_date == cleaning.scheduled_date,
        )
        .order_by(LinenOrder.id.asc())
    ).scalars().all()
    match = _prefer_active(list(legacy))
    return match, match is not None


def ensure_order(
    session: Session,
    cleaning: Cleaning,
    *,
    price_list: dict[str, float] | None = None,
) -> LinenOrder | None:
    """Find or create the linen order bound to a cleaning.

    Changes are flushed, the caller commits.
    """

    if cleaning.status == CleaningStatus.CANCELLED:
        return None
    prop = session.get(Property, cleaning.property_id)
    if prop is None or prop.uses_own_linen:
        return None

    match, legacy = find_matching_order(session, cleaning)
    if match is not None:
        if legacy:
            match.cleaning_id = cleaning.id
            log_event(
                session,
                domain="orders",
                action="order_linked",
                actor_user_id_raw=None,
                payload={"order_id": match.id, "cleaning_id": cleaning.id, "before": {"cleaning_id": None}},
            )
            _LOGGER.info("Linked legacy order %s to cleaning %s", match.id, cleaning.id)
        return match

    guests = cleaning.guests_count or prop.max_guests or DEFAULT_GUESTS
    manifest = build_manifest(prop, guests)
    if not manifest:
        return None

    prices = price_list if price_list is not None else load_price_list(session)
    order = LinenOrder(
        property_id=cleaning.property_id,
        cleaning_id=cleaning.id,
        scheduled_date=cleaning.scheduled_date,
        scheduled_time=cleaning.scheduled_time,
        status=OrderStatus.PENDING,
        items=[
            {"item_id": item_id, "quantity": qty, "unit_price": prices.get(item_id)}
            for item_id, qty in sorted(manifest.items())
        ],
    )
    session.add(order)
    session.flush()
    _LOGGER.debug("Created order %s for cleaning %s", order.id, cleaning.id)
    return order


def backfill_missing_orders(
    session: Session,
    *,
    days_back: int,
    dry_run: bool,
    property_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict:
    """Pass every active, non-excluded cleaning in the window through ensure_order."""

    start = date_from or window_start(days_back)
    query = select(Cleaning).where(
        Cleaning.status.in_(ACTIVE_CLEANING_STATUSES),
        Cleaning.scheduled_date >= start,
    )
    if date_to is not None:
        query = query.where(Cleaning.scheduled_date <= date_to)
    if property_id:
        query = query.where(Cleaning.property_id == property_id)
    cleanings = session.execute(query.order_by(Cleaning.scheduled_date.asc(), Cleaning.id.asc())).scalars().all()

    price_list = load_price_list(session)
    report = {
        "dry_run": dry_run,
        "window_start": start,
        "checked": 0,
        "created": 0,
        "linked": 0,
        "already_linked": 0,
        "skipped": 0,
        "entries": [],
    }
    for cleaning in cleanings:
        report["checked"] += 1
        prop = session.get(Property, cleaning.property_id)
        if prop is None or prop.uses_own_linen:
            report["skipped"] += 1
            continue
        if cleaning.booking_source is not None and is_excluded(
            session, cleaning.property_id, cleaning.scheduled_date, cleaning.booking_source
        ):
            report["skipped"] += 1
            continue

        match, legacy = find_matching_order(session, cleaning)
        if match is not None and not legacy:
            report["already_linked"] += 1
            continue

        action = "link" if match is not None else "create"
        entry = {
            "cleaning_id": cleaning.id,
            "property_id": cleaning.property_id,
            "scheduled_date": cleaning.scheduled_date,
            "action": action,
            "order_id": match.id if match is not None else None,
        }
        if not dry_run:
            order = ensure_order(session, cleaning, price_list=price_list)
            if order is None:
                report["skipped"] += 1
                session.rollback()
                continue
            entry["order_id"] = order.id
            if action == "create":
                log_event(
                    session,
                    domain="audit",
                    action="order_backfilled",
                    actor_user_id_raw=None,
                    payload={"cleaning_id": cleaning.id, "before": None, "after": {"order_id": order.id}},
                )
                _LOGGER.info("Backfilled order %s for cleaning %s", order.id, cleaning.id)
            session.commit()
        report["created" if action == "create" else "linked"] += 1
        report["entries"].append(entry)

    return report
