"""Property, user and price-list synchronization from upstream directories."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import InventoryItem, Property, User, UserStatus
from ..schemas import InventoryPriceItem, PropertySyncItem, UserSyncItem
from .access import NotFoundError, require_admin
from .activity import log_event

_LOGGER = logging.getLogger(__name__)

PROPERTY_FIELDS = (
    "name",
    "owner_user_id",
    "active",
    "uses_own_linen",
    "cleaning_base_price",
    "service_configs",
    "max_guests",
    "bedrooms",
    "bathrooms",
    "checkout_time",
    "latitude",
    "longitude",
)
USER_FIELDS = ("display_name", "role", "status", "rating", "latitude", "longitude", "notify_target")


def sync_properties(session: Session, items: list[PropertySyncItem]) -> list[Property]:
    """Upsert properties; properties absent from the payload are left as they are."""

    existing = {row.id: row for row in session.execute(select(Property)).scalars().all()}
    for item in items:
        values = item.model_dump(include=set(PROPERTY_FIELDS))
        row = existing.get(item.id)
        if row is None:
            session.add(Property(id=item.id, **values))
            continue
        for key, value in values.items():
            setattr(row, key, value)
    session.commit()
    return list_properties(session)


def list_properties(session: Session) -> list[Property]:
    return session.execute(select(Property).order_by(Property.id.asc())).scalars().all()


def delete_property(session: Session, property_id: str, *, actor_user_id: str | None) -> None:
    """Remove a property record; its cleanings, orders and bookings become orphans."""

    actor = require_admin(session, actor_user_id)
    prop = session.get(Property, property_id)
    if prop is None:
        raise NotFoundError(f"property {property_id} not found")
    session.delete(prop)
    log_event(
        session,
        domain="directory",
        action="property_deleted",
        actor_user_id_raw=actor.id,
        payload={"property_id": property_id, "name": prop.name},
    )
    session.commit()
    _LOGGER.info("Property %s deleted by %s", property_id, actor.id)


def sync_users(session: Session, items: list[UserSyncItem], *, deactivate_missing: bool = True) -> list[User]:
    """Upsert users and operators from the upstream directory."""

    existing = {row.id: row for row in session.execute(select(User)).scalars().all()}
    seen: set[str] = set()
    for item in items:
        values = item.model_dump(include=set(USER_FIELDS))
        values["display_name"] = values["display_name"].strip()
        row = existing.get(item.id)
        if row is None:
            session.add(User(id=item.id, **values))
        else:
            for key, value in values.items():
                setattr(row, key, value)
        seen.add(item.id)

    if deactivate_missing:
        for user_id, row in existing.items():
            if user_id not in seen and row.status == UserStatus.ACTIVE:
                row.status = UserStatus.INACTIVE
                _LOGGER.info("Deactivated user %s missing from directory sync", user_id)

    session.commit()
    return session.execute(select(User).order_by(User.display_name.asc(), User.id.asc())).scalars().all()


def sync_price_list(session: Session, items: list[InventoryPriceItem]) -> dict[str, float]:
    existing = {row.id: row for row in session.execute(select(InventoryItem)).scalars().all()}
    for item in items:
        row = existing.get(item.id)
        if row is None:
            session.add(InventoryItem(id=item.id, name=item.name, unit_price=item.unit_price))
            continue
        row.unit_price = item.unit_price
        if item.name is not None:
            row.name = item.name
    session.commit()
    return {
        row.id: row.unit_price
        for row in session.execute(select(InventoryItem).order_by(InventoryItem.id.asc())).scalars().all()
    }
