"""Service-level booking reconciliation tests."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from turnover_service.models import Cleaning, LinenOrder, Property
from turnover_service.schemas import BookingFeedItem, PropertySyncItem
from turnover_service.services import sync
from turnover_service.services.linen import fallback_manifest
from turnover_service.services.sync import reconcile


def _item(property_id: str, day: date, uid: str) -> BookingFeedItem:
    return BookingFeedItem(
        property_id=property_id,
        check_in=date(2031, 6, 1),
        check_out=day,
        source="airbnb",
        external_uid=uid,
    )


def test_service_configs_shape_is_validated() -> None:
    with pytest.raises(ValidationError):
        PropertySyncItem(id="px", name="X", service_configs={"4": 5})
    with pytest.raises(ValidationError):
        PropertySyncItem(id="px", name="X", service_configs={"four": {"ba": {"shower_towel": 4}}})
    with pytest.raises(ValidationError):
        PropertySyncItem(id="px", name="X", service_configs={"4": {"ba": {"shower_towel": -1}}})

    item = PropertySyncItem(id="px", name="X", service_configs={"4": {"bl": {"b1": {"double_sheet": 3}}}})
    assert item.model_dump()["service_configs"] == {"4": {"bl": {"b1": {"double_sheet": 3}}, "ba": {}, "ki": {}}}


def test_malformed_config_does_not_abort_the_pass(seeded_session) -> None:
    seeded_session.add(
        Property(id="pbad", name="Broken Config", max_guests=4, bedrooms=2, bathrooms=1, service_configs={"4": 5})
    )
    seeded_session.commit()

    result = reconcile(seeded_session, [_item("pbad", date(2031, 6, 5), "bad-1"), _item("p1", date(2031, 6, 5), "ok-1")])

    assert result["errors"] == 0
    assert result["created"] == 2
    assert result["orders_created"] == 2
    order = seeded_session.execute(select(LinenOrder).where(LinenOrder.property_id == "pbad")).scalar_one()
    assert {item["item_id"]: item["quantity"] for item in order.items} == fallback_manifest(4, 2, 1)


def test_failing_tuple_is_counted_and_the_rest_still_run(seeded_session, monkeypatch) -> None:
    real_ensure_order = sync.ensure_order
    calls = []

    def flaky_ensure_order(session, cleaning, **kwargs):
        calls.append(cleaning.scheduled_date)
        if len(calls) == 1:
            raise SQLAlchemyError("database is locked")
        return real_ensure_order(session, cleaning, **kwargs)

    monkeypatch.setattr(sync, "ensure_order", flaky_ensure_order)
    feed = [_item("p1", date(2031, 6, 5), "uid-1"), _item("p1", date(2031, 6, 9), "uid-2")]

    result = reconcile(seeded_session, feed)

    assert result["errors"] == 1
    assert result["created"] == 1
    assert result["orders_created"] == 1
    assert result["bookings_created"] == 1
    days = seeded_session.execute(select(Cleaning.scheduled_date)).scalars().all()
    assert days == [date(2031, 6, 9)]

    monkeypatch.undo()
    retry = reconcile(seeded_session, feed)

    assert retry["errors"] == 0
    assert retry["created"] == 1
    assert retry["skipped"] == 1
    assert len(seeded_session.execute(select(LinenOrder)).scalars().all()) == 2
