"""Assignment advisor scoring tests."""

from __future__ import annotations

import pytest

from turnover_service.models import User, UserRole, UserStatus
from turnover_service.services.advisor import (
    distance_score,
    familiarity_score,
    haversine_km,
    performance_score,
    suggest,
)

TARGET = (45.0, 9.0)


def _operator(user_id: str, *, rating=4.0, latitude=None, longitude=None, **kwargs) -> User:
    return User(
        id=user_id,
        display_name=user_id.title(),
        role=kwargs.get("role", UserRole.OPERATOR),
        status=kwargs.get("status", UserStatus.ACTIVE),
        rating=rating,
        latitude=latitude,
        longitude=longitude,
    )


@pytest.mark.parametrize(
    ("distance", "expected"),
    [(0.0, 30), (0.49, 30), (0.5, 27), (2.9, 18), (14.9, 3), (15.0, 0), (80.0, 0)],
)
def test_distance_score_steps(distance: float, expected: int) -> None:
    assert distance_score(distance) == expected


def test_component_scores() -> None:
    assert familiarity_score(0) == 0
    assert familiarity_score(2) == 15
    assert familiarity_score(4) == 20
    assert familiarity_score(9) == 25
    assert performance_score(None) == 16
    assert performance_score(4.5) == 18
    assert performance_score(5.0) == 20


def test_haversine_is_symmetric() -> None:
    there = haversine_km((45.0, 9.0), (45.1, 9.1))
    back = haversine_km((45.1, 9.1), (45.0, 9.0))
    assert there == pytest.approx(back)
    assert 13 < there < 14


def test_ranking_prefers_close_idle_operators() -> None:
    near = _operator("op-near", rating=5.0, latitude=45.001, longitude=9.0)
    busy = _operator("op-busy")
    far_job = (45.2, 9.0)

    ranked = suggest(TARGET, [busy, near], {"op-busy": [far_job, far_job, far_job]})

    assert [entry["operator_id"] for entry in ranked] == ["op-near", "op-busy"]
    best, worst = ranked
    assert best["proximity"] == 30
    assert best["workload"] == 25
    assert best["total"] == 75
    assert best["is_recommended"] is True
    assert best["warnings"] == []

    assert worst["proximity"] == 0
    assert worst["workload"] == 5
    assert worst["assignments_today"] == 3
    assert worst["total"] == 21
    assert worst["is_recommended"] is False
    assert len(worst["warnings"]) == 2


def test_missing_coordinates_score_neutral() -> None:
    nowhere = _operator("op-nowhere")
    unknown_jobs = _operator("op-jobs", latitude=45.0, longitude=9.0)

    ranked = suggest(TARGET, [nowhere, unknown_jobs], {"op-jobs": [None]})
    by_id = {entry["operator_id"]: entry for entry in ranked}

    assert by_id["op-nowhere"]["proximity"] == 15
    assert by_id["op-nowhere"]["distance_km"] is None
    # today's jobs take precedence over the last known position
    assert by_id["op-jobs"]["proximity"] == 15
    assert by_id["op-jobs"]["workload"] == 18

    untargeted = suggest(None, [_operator("op-near", latitude=45.0, longitude=9.0)], {})
    assert untargeted[0]["proximity"] == 15


def test_only_active_operators_are_ranked() -> None:
    candidates = [
        _operator("op-off", status=UserStatus.INACTIVE),
        _operator("owner-x", role=UserRole.OWNER),
        _operator("op-on"),
    ]

    ranked = suggest(TARGET, candidates, {})

    assert [entry["operator_id"] for entry in ranked] == ["op-on"]


def test_ties_break_by_operator_id_and_limit_applies() -> None:
    candidates = [_operator(user_id) for user_id in ("op-c", "op-a", "op-b")]

    ranked = suggest(TARGET, candidates, {}, limit=2)

    assert [entry["operator_id"] for entry in ranked] == ["op-a", "op-b"]


def test_familiarity_lifts_experienced_operator() -> None:
    candidates = [_operator("op-a"), _operator("op-b")]

    ranked = suggest(TARGET, candidates, {}, completed_counts={"op-b": 5})

    assert ranked[0]["operator_id"] == "op-b"
    assert ranked[0]["familiarity"] == 25
