"""Test fixtures for the turnover service."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

USERS = [
    {"id": "admin-1", "display_name": "Ada Admin", "role": "admin", "notify_target": "ada"},
    {"id": "owner-1", "display_name": "Olga Owner", "role": "owner", "notify_target": "olga"},
    {"id": "owner-2", "display_name": "Otto Owner", "role": "owner"},
    {
        "id": "op-1",
        "display_name": "Paula Operator",
        "role": "operator",
        "rating": 4.5,
        "latitude": 45.4642,
        "longitude": 9.1900,
        "notify_target": "paula",
    },
    {"id": "op-2", "display_name": "Piero Operator", "role": "operator", "rating": 3.5, "notify_target": "piero"},
]

PROPERTIES = [
    {
        "id": "p1",
        "name": "Navigli Loft",
        "owner_user_id": "owner-1",
        "cleaning_base_price": 60.0,
        "max_guests": 4,
        "bedrooms": 2,
        "bathrooms": 1,
        "checkout_time": "11:00",
        "latitude": 45.4520,
        "longitude": 9.1760,
    },
    {
        "id": "p2",
        "name": "Brera Studio",
        "owner_user_id": "owner-2",
        "uses_own_linen": True,
        "cleaning_base_price": 40.0,
        "max_guests": 2,
    },
]

PRICES = [
    {"id": "double_sheet", "unit_price": 2.5},
    {"id": "single_sheet", "unit_price": 1.8},
    {"id": "pillowcase", "unit_price": 0.6},
    {"id": "shower_towel", "unit_price": 1.2},
    {"id": "face_towel", "unit_price": 0.8},
    {"id": "bidet_towel", "unit_price": 0.5},
    {"id": "bath_mat", "unit_price": 0.9},
]


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("TURNOVER_DB_PATH", str(db_path))
    monkeypatch.setenv("TURNOVER_API_TOKEN", "test-token")
    monkeypatch.delenv("TURNOVER_DB_URL", raising=False)
    monkeypatch.delenv("TURNOVER_NOTIFY_WEBHOOK_URL", raising=False)

    from turnover_service import db
    from turnover_service.db import Base
    from turnover_service.main import app

    db.configure_engine(f"sqlite:///{db_path}")
    assert db.engine is not None
    Base.metadata.drop_all(bind=db.engine)
    Base.metadata.create_all(bind=db.engine)

    with TestClient(app) as api_client:
        yield api_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"x-turnover-token": "test-token"}


@pytest.fixture
def directory(client: TestClient, auth_headers: dict[str, str]) -> None:
    response = client.put("/v1/users/sync", headers=auth_headers, json={"users": USERS})
    assert response.status_code == 200
    response = client.put("/v1/properties/sync", headers=auth_headers, json={"properties": PROPERTIES})
    assert response.status_code == 200
    response = client.put("/v1/inventory/prices", headers=auth_headers, json={"items": PRICES})
    assert response.status_code == 200


@pytest.fixture
def session() -> Session:
    from turnover_service import models  # noqa: F401
    from turnover_service.db import Base, build_engine

    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_session = factory()
    try:
        yield db_session
    finally:
        db_session.close()
        engine.dispose()


@pytest.fixture
def seeded_session(session: Session) -> Session:
    from turnover_service.schemas import InventoryPriceItem, PropertySyncItem, UserSyncItem
    from turnover_service.services import directory as directory_service

    directory_service.sync_users(session, [UserSyncItem(**item) for item in USERS])
    directory_service.sync_properties(session, [PropertySyncItem(**item) for item in PROPERTIES])
    directory_service.sync_price_list(session, [InventoryPriceItem(**item) for item in PRICES])
    return session
