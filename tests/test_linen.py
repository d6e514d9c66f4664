"""Linen manifest, order linkage and ghost classification tests."""

from __future__ import annotations

from datetime import date

from turnover_service.models import Cleaning, CleaningStatus, LinenOrder, OrderStatus, Property
from turnover_service.services.linen import (
    GhostReason,
    build_manifest,
    classify_ghost,
    configured_manifest,
    ensure_order,
    fallback_manifest,
    order_total,
)


def _cleaning(session, property_id: str = "p1", day: date = date(2026, 2, 8), **kwargs) -> Cleaning:
    cleaning = Cleaning(
        property_id=property_id,
        scheduled_date=day,
        scheduled_time="11:00",
        status=kwargs.pop("status", CleaningStatus.SCHEDULED),
        operators=[],
        **kwargs,
    )
    session.add(cleaning)
    session.commit()
    return cleaning


def test_fallback_manifest_for_five_guests_two_bedrooms() -> None:
    manifest = fallback_manifest(5, bedrooms=2, bathrooms=1)

    assert manifest["double_sheet"] == 6
    assert manifest["single_sheet"] == 3
    assert manifest["pillowcase"] == 5
    assert manifest["shower_towel"] == 5
    assert manifest["face_towel"] == 5
    assert manifest["bidet_towel"] == 5
    assert manifest["bath_mat"] == 1


def test_fallback_manifest_defaults_rooms_and_drops_zero_lines() -> None:
    manifest = fallback_manifest(2, bedrooms=None, bathrooms=None)

    assert manifest == {
        "double_sheet": 3,
        "pillowcase": 2,
        "shower_towel": 2,
        "face_towel": 2,
        "bidet_towel": 2,
        "bath_mat": 1,
    }


def test_configured_manifest_sums_beds_and_categories() -> None:
    configs = {
        "3": {
            "bl": {"bed-1": {"double_sheet": 3, "pillowcase": 2}, "bed-2": {"single_sheet": 3, "pillowcase": 1}},
            "ba": {"shower_towel": 3, "bath_mat": 0},
            "ki": {"tea_towel": 1},
        }
    }

    assert configured_manifest(configs, 3) == {
        "double_sheet": 3,
        "pillowcase": 3,
        "single_sheet": 3,
        "shower_towel": 3,
        "tea_towel": 1,
    }
    assert configured_manifest(configs, 4) == {}



def test_malformed_configuration_is_ignored() -> None:
    assert configured_manifest({"4": 5}, 4) == {}
    assert configured_manifest({"4": {"bl": ["double_sheet"], "ba": {"shower_towel": 4}}}, 4) == {"shower_towel": 4}
    assert configured_manifest({"4": {"bl": {"b1": "two"}, "ki": None}}, 4) == {}
    assert configured_manifest(["4"], 4) == {}

    prop = Property(id="px", name="X", bedrooms=1, bathrooms=1, service_configs={"2": 5})
    assert build_manifest(prop, 2) == fallback_manifest(2, 1, 1)

def test_build_manifest_prefers_configuration() -> None:
    prop = Property(id="px", name="X", bedrooms=3, bathrooms=2, service_configs={"2": {"ba": {"shower_towel": 2}}})

    assert build_manifest(prop, 2) == {"shower_towel": 2}
    assert build_manifest(prop, 4)["bath_mat"] == 2


def test_ghost_classification() -> None:
    zero_priced = [{"item_id": "towel", "quantity": 3, "unit_price": 0}]

    assert classify_ghost(LinenOrder(items=zero_priced), {}) == GhostReason.ALL_ITEMS_ZERO_PRICE
    assert order_total(LinenOrder(items=zero_priced), {}) == 0
    assert classify_ghost(LinenOrder(items=[]), {}) == GhostReason.NO_ITEMS
    assert classify_ghost(LinenOrder(items=zero_priced, total_price_override=15), {}) is None
    assert classify_ghost(LinenOrder(items=[{"item_id": "towel", "quantity": 0, "unit_price": 2}]), {}) == (
        GhostReason.CALCULATED_ZERO
    )


def test_order_total_falls_back_to_price_list() -> None:
    order = LinenOrder(
        items=[
            {"item_id": "double_sheet", "quantity": 2, "unit_price": None},
            {"item_id": "pillowcase", "quantity": 4, "unit_price": 1.0},
            {"item_id": "unknown", "quantity": 5},
        ]
    )

    assert order_total(order, {"double_sheet": 2.5, "pillowcase": 0.6}) == 9.0
    assert classify_ghost(order, {"double_sheet": 2.5}) is None


def test_ensure_order_creates_one_pending_order(seeded_session) -> None:
    cleaning = _cleaning(seeded_session, guests_count=4)

    order = ensure_order(seeded_session, cleaning)
    seeded_session.commit()

    assert order is not None
    assert order.status == OrderStatus.PENDING
    assert order.cleaning_id == cleaning.id
    assert order.scheduled_date == cleaning.scheduled_date
    items = {item["item_id"]: item for item in order.items}
    assert items["double_sheet"]["quantity"] == 6
    assert items["double_sheet"]["unit_price"] == 2.5
    assert "single_sheet" not in items
    assert order_total(order, {}) > 0

    again = ensure_order(seeded_session, cleaning)
    assert again is not None and again.id == order.id


def test_ensure_order_skips_own_linen_and_cancelled(seeded_session) -> None:
    own_linen = _cleaning(seeded_session, property_id="p2")
    cancelled = _cleaning(seeded_session, day=date(2026, 2, 9), status=CleaningStatus.CANCELLED)

    assert ensure_order(seeded_session, own_linen) is None
    assert ensure_order(seeded_session, cancelled) is None


def test_ensure_order_binds_legacy_order_on_same_slot(seeded_session) -> None:
    legacy = LinenOrder(
        property_id="p1",
        scheduled_date=date(2026, 2, 8),
        status=OrderStatus.ASSIGNED,
        items=[{"item_id": "double_sheet", "quantity": 3, "unit_price": 2.5}],
    )
    seeded_session.add(legacy)
    seeded_session.commit()
    cleaning = _cleaning(seeded_session)

    order = ensure_order(seeded_session, cleaning)
    seeded_session.commit()

    assert order is not None
    assert order.id == legacy.id
    assert order.cleaning_id == cleaning.id
    assert seeded_session.query(LinenOrder).count() == 1
