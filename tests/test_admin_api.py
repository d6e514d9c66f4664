"""Admin reconcile, backfill and ghost purge API tests."""

from __future__ import annotations

from datetime import date, timedelta

CHECK_OUT = date.today() + timedelta(days=5)


def _sync_booking(client, headers) -> None:
    response = client.post(
        "/v1/sync/bookings",
        headers=headers,
        json={
            "bookings": [
                {
                    "property_id": "p1",
                    "check_in": (CHECK_OUT - timedelta(days=2)).isoformat(),
                    "check_out": CHECK_OUT.isoformat(),
                    "source": "airbnb",
                }
            ]
        },
    )
    assert response.status_code == 200


def test_audit_report_is_read_only(client, auth_headers, directory) -> None:
    _sync_booking(client, auth_headers)

    response = client.get("/v1/admin/audit-report?property_id=p1", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert body["summary"] == {
        "orphans": 0,
        "broken_links": 0,
        "duplicate_clusters": 0,
        "ghost_orders": 0,
        "duplicate_orders": 0,
        "stale_cleanings": 0,
        "missing_orders": 0,
        "prices_backfilled": 0,
    }
    assert body["missing_orders"]["already_linked"] == 1


def test_repairs_require_admin(client, auth_headers, directory) -> None:
    for path in ("/v1/admin/reconcile", "/v1/admin/backfill-orders"):
        anonymous = client.post(path, headers=auth_headers, json={"dry_run": False})
        assert anonymous.status_code == 403
        owner = client.post(path, headers=auth_headers, json={"dry_run": False, "actor_user_id": "owner-1"})
        assert owner.status_code == 403

    dry = client.post("/v1/admin/reconcile", headers=auth_headers, json={})
    assert dry.status_code == 200
    assert dry.json()["dry_run"] is True

    applied = client.post(
        "/v1/admin/reconcile",
        headers=auth_headers,
        json={"dry_run": False, "actor_user_id": "admin-1"},
    )
    assert applied.status_code == 200
    events = client.get("/v1/activity?domain=audit", headers=auth_headers).json()
    assert [event["action"] for event in events] == ["audit_run"]


def test_backfill_endpoint_links_cleanings(client, auth_headers, directory) -> None:
    _sync_booking(client, auth_headers)

    response = client.post(
        "/v1/admin/backfill-orders",
        headers=auth_headers,
        json={"actor_user_id": "admin-1", "days_back": 10},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["checked"] == 1
    assert body["already_linked"] == 1
    assert body["created"] == 0


def test_ghost_purge_keeps_real_orders(client, auth_headers, directory) -> None:
    _sync_booking(client, auth_headers)
    order_id = client.get("/v1/orders?property_id=p1", headers=auth_headers).json()[0]["id"]

    forbidden = client.post(
        "/v1/admin/ghost-orders/purge",
        headers=auth_headers,
        json={"actor_user_id": "owner-1", "order_ids": [order_id]},
    )
    assert forbidden.status_code == 403

    response = client.post(
        "/v1/admin/ghost-orders/purge",
        headers=auth_headers,
        json={"actor_user_id": "admin-1", "order_ids": [order_id, 999]},
    )
    assert response.status_code == 200
    assert response.json() == {"deleted": [], "not_ghost": [order_id], "not_found": [999]}
    assert len(client.get("/v1/orders?property_id=p1", headers=auth_headers).json()) == 1


def test_deleted_property_leaves_orphans_for_the_audit(client, auth_headers, directory) -> None:
    _sync_booking(client, auth_headers)

    forbidden = client.request("DELETE", "/v1/properties/p1", headers=auth_headers, json={"actor_user_id": "owner-1"})
    assert forbidden.status_code == 403

    deleted = client.request("DELETE", "/v1/properties/p1", headers=auth_headers, json={"actor_user_id": "admin-1"})
    assert deleted.status_code == 200
    missing = client.request("DELETE", "/v1/properties/p1", headers=auth_headers, json={"actor_user_id": "admin-1"})
    assert missing.status_code == 404

    report = client.get("/v1/admin/audit-report", headers=auth_headers).json()
    assert report["summary"]["orphans"] == 3


def test_duplicate_order_resolution_requires_admin(client, auth_headers, directory) -> None:
    _sync_booking(client, auth_headers)

    forbidden = client.post(
        "/v1/admin/duplicate-orders/resolve",
        headers=auth_headers,
        json={"actor_user_id": "owner-1"},
    )
    assert forbidden.status_code == 403

    response = client.post(
        "/v1/admin/duplicate-orders/resolve",
        headers=auth_headers,
        json={"actor_user_id": "admin-1", "property_id": "p1"},
    )
    assert response.status_code == 200
    assert response.json() == {"clusters": 0, "cancelled": [], "untouched": []}


def test_stale_cleanings_endpoint_cancels_moved_checkout(client, auth_headers, directory) -> None:
    later = CHECK_OUT + timedelta(days=2)
    for check_out in (CHECK_OUT, later):
        moved = client.post(
            "/v1/sync/bookings",
            headers=auth_headers,
            json={
                "bookings": [
                    {
                        "property_id": "p1",
                        "check_in": (CHECK_OUT - timedelta(days=2)).isoformat(),
                        "check_out": check_out.isoformat(),
                        "source": "airbnb",
                        "external_uid": "uid-1",
                    }
                ]
            },
        )
        assert moved.status_code == 200
    assert moved.json()["stale_cleanings"] == 1
    report = client.get("/v1/admin/audit-report", headers=auth_headers).json()
    stale_id = report["stale_cleanings"][0]["cleaning_id"]

    forbidden = client.post(
        "/v1/admin/stale-cleanings/cancel",
        headers=auth_headers,
        json={"actor_user_id": "owner-1"},
    )
    assert forbidden.status_code == 403

    response = client.post(
        "/v1/admin/stale-cleanings/cancel",
        headers=auth_headers,
        json={"actor_user_id": "admin-1", "property_id": "p1"},
    )
    assert response.status_code == 200
    assert response.json()["cancelled"] == [stale_id]

    cleanings = client.get("/v1/cleanings?property_id=p1&include_cancelled=true", headers=auth_headers).json()
    statuses = {row["scheduled_date"]: row["status"] for row in cleanings}
    assert statuses == {CHECK_OUT.isoformat(): "cancelled", later.isoformat(): "scheduled"}
    exclusions = client.get("/v1/exclusions?property_id=p1", headers=auth_headers).json()
    assert [row["original_date"] for row in exclusions] == [CHECK_OUT.isoformat()]
