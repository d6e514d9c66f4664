"""Operator suggestions for a cleaning, scored by proximity, familiarity, workload and rating."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Cleaning, CleaningStatus, Property, User, UserRole, UserStatus
from .access import get_cleaning_or_raise

Coordinates = tuple[float, float]

EARTH_RADIUS_KM = 6371.0
ROAD_FACTOR = 1.4
NEUTRAL_PROXIMITY = 15
DEFAULT_RATING = 4.0
RECOMMENDED_THRESHOLD = 70
BUSY_DAY_ASSIGNMENTS = 3
FAR_DISTANCE_KM = 10.0

DISTANCE_STEPS = (
    (0.5, 30),
    (1.0, 27),
    (1.5, 24),
    (2.0, 21),
    (3.0, 18),
    (4.0, 15),
    (5.0, 12),
    (7.0, 9),
    (10.0, 6),
    (15.0, 3),
)
WORKLOAD_SCORES = {0: 25, 1: 18, 2: 10, 3: 5}


def haversine_km(origin: Coordinates, target: Coordinates) -> float:
    lat1, lon1 = map(math.radians, origin)
    lat2, lon2 = map(math.radians, target)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def distance_score(distance_km: float) -> int:
    for limit, score in DISTANCE_STEPS:
        if distance_km < limit:
            return score
    return 0


def familiarity_score(completed: int) -> int:
    if completed >= 5:
        return 25
    if completed >= 3:
        return 20
    if completed >= 1:
        return 15
    return 0


def workload_score(assignments_today: int) -> int:
    return WORKLOAD_SCORES.get(assignments_today, 0)


def performance_score(rating: float | None) -> int:
    return round((DEFAULT_RATING if rating is None else rating) * 4)


def _coords(latitude: float | None, longitude: float | None) -> Coordinates | None:
    if latitude is None or longitude is None:
        return None
    return (latitude, longitude)


def _proximity(
    target: Coordinates | None,
    reference_points: Sequence[Coordinates],
) -> tuple[int, float | None]:
    if target is None or not reference_points:
        return NEUTRAL_PROXIMITY, None
    distance = min(haversine_km(point, target) for point in reference_points) * ROAD_FACTOR
    return distance_score(distance), round(distance, 2)


def suggest(
    target: Coordinates | None,
    candidates: Sequence[User],
    todays_assignments_by_operator: Mapping[str, Sequence[Coordinates | None]],
    *,
    limit: int = 5,
    completed_counts: Mapping[str, int] | None = None,
) -> list[dict]:
    """Rank active operators for a cleaning at ``target``.

    ``todays_assignments_by_operator`` maps operator id to the coordinates of
    that operator's other jobs on the same day (None where unknown). Missing
    coordinates score neutral rather than excluding anyone.
    """

    completed_counts = completed_counts or {}
    ranked = []
    for operator in candidates:
        if operator.role != UserRole.OPERATOR or operator.status != UserStatus.ACTIVE:
            continue
        assignments = list(todays_assignments_by_operator.get(operator.id, ()))
        references = [point for point in assignments if point is not None]
        if not assignments:
            last_known = _coords(operator.latitude, operator.longitude)
            if last_known is not None:
                references = [last_known]

        proximity, distance = _proximity(target, references)
        familiarity = familiarity_score(completed_counts.get(operator.id, 0))
        workload = workload_score(len(assignments))
        performance = performance_score(operator.rating)
        total = proximity + familiarity + workload + performance

        warnings = []
        if len(assignments) >= BUSY_DAY_ASSIGNMENTS:
            warnings.append(f"already has {len(assignments)} cleanings that day")
        if distance is not None and distance > FAR_DISTANCE_KM:
            warnings.append(f"nearest job is {distance:.1f} km away")

        ranked.append(
            {
                "operator_id": operator.id,
                "name": operator.display_name,
                "total": total,
                "proximity": proximity,
                "familiarity": familiarity,
                "workload": workload,
                "performance": performance,
                "distance_km": distance,
                "assignments_today": len(assignments),
                "is_recommended": total >= RECOMMENDED_THRESHOLD,
                "warnings": warnings,
            }
        )

    ranked.sort(key=lambda entry: (-entry["total"], entry["operator_id"]))
    return ranked[:limit]


def suggest_for_cleaning(session: Session, cleaning_id: int, *, limit: int = 5) -> list[dict]:
    """Load the inputs for ``suggest`` from the stores; nothing is written."""

    cleaning = get_cleaning_or_raise(session, cleaning_id)
    prop = session.get(Property, cleaning.property_id)
    target = _coords(prop.latitude, prop.longitude) if prop is not None else None

    operators = session.execute(
        select(User)
        .where(User.role == UserRole.OPERATOR, User.status == UserStatus.ACTIVE)
        .order_by(User.id.asc())
    ).scalars().all()

    same_day = session.execute(
        select(Cleaning, Property)
        .outerjoin(Property, Property.id == Cleaning.property_id)
        .where(
            Cleaning.scheduled_date == cleaning.scheduled_date,
            Cleaning.status != CleaningStatus.CANCELLED,
            Cleaning.id != cleaning.id,
        )
    ).all()
    assignments: dict[str, list[Coordinates | None]] = {}
    for other, other_prop in same_day:
        point = _coords(other_prop.latitude, other_prop.longitude) if other_prop is not None else None
        for operator_id in other.operator_ids:
            assignments.setdefault(operator_id, []).append(point)

    completed_counts: dict[str, int] = {}
    completed = session.execute(
        select(Cleaning.operators).where(
            Cleaning.property_id == cleaning.property_id,
            Cleaning.status == CleaningStatus.COMPLETED,
        )
    ).scalars().all()
    for entries in completed:
        for entry in entries or []:
            operator_id = str(entry.get("id"))
            completed_counts[operator_id] = completed_counts.get(operator_id, 0) + 1

    return suggest(target, operators, assignments, limit=limit, completed_counts=completed_counts)
