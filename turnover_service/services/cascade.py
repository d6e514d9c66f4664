"""Manual cancel, move and operator changes cascading into exclusions and orders."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    CANCELLABLE_ORDER_STATUSES,
    CancelledCleaningRecord,
    Cleaning,
    CleaningStatus,
    ExclusionReason,
    LinenOrder,
    OrderStatus,
    Property,
    User,
    UserRole,
    UserStatus,
)
from .access import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    active_admins,
    get_cleaning_or_raise,
    get_user,
    is_admin,
    require_admin,
    require_cleaning_manager,
    require_property_manager,
)
from .activity import log_event
from .exclusions import record_exclusion
from .linen import DEFAULT_GUESTS, bound_orders, ensure_order
from .notifications import user_notification
from .sync import DEFAULT_CHECKOUT_TIME, active_cleaning_for_slot
from .time_utils import now_utc

_LOGGER = logging.getLogger(__name__)

MIN_REASON_LENGTH = 3
NOTIFICATION_TITLE = "Turnover Cleaning"


def _empty_result(cleaning_id: int) -> dict:
    return {
        "cleaning_id": cleaning_id,
        "deleted": False,
        "time_only": False,
        "exclusion_id": None,
        "orders_cancelled": 0,
        "orders_updated": 0,
        "orders_untouched": 0,
        "orders_already_cancelled": 0,
        "orders_failed": 0,
        "notifications": [],
    }


def _snapshot(cleaning: Cleaning) -> dict:
    return {
        "status": cleaning.status.value,
        "scheduled_date": cleaning.scheduled_date.isoformat(),
        "scheduled_time": cleaning.scheduled_time,
        "operators": list(cleaning.operators or []),
        "booking_source": cleaning.booking_source.value if cleaning.booking_source else None,
    }


def _slot_label(session: Session, cleaning: Cleaning, day: date | None = None) -> str:
    prop = session.get(Property, cleaning.property_id)
    name = prop.name if prop is not None else cleaning.property_id
    return f"{name} on {(day or cleaning.scheduled_date).isoformat()}"


def _assigned_operators(session: Session, cleaning: Cleaning, *, exclude_user_id: str | None) -> list[User]:
    users = []
    for operator_id in cleaning.operator_ids:
        if operator_id == exclude_user_id:
            continue
        user = get_user(session, operator_id)
        if user is not None:
            users.append(user)
    return users


def _admin_recipients(session: Session, actor: User) -> list[User]:
    if is_admin(actor):
        return []
    return active_admins(session)


def _record_cancellation(
    session: Session,
    cleaning: Cleaning,
    *,
    reason: str | None,
    actor_user_id: str,
    moved_to: date | None = None,
) -> CancelledCleaningRecord:
    record = CancelledCleaningRecord(
        property_id=cleaning.property_id,
        original_date=cleaning.scheduled_date,
        booking_source=cleaning.booking_source,
        booking_id=cleaning.booking_id,
        cleaning_id=cleaning.id,
        reason=reason,
        moved_to=moved_to,
        actor_user_id=actor_user_id,
    )
    session.add(record)
    session.flush()
    return record


def _write_exclusion(
    session: Session,
    cleaning: Cleaning,
    *,
    reason: ExclusionReason,
    actor: User,
    note: str | None,
    new_date: date | None = None,
) -> int:
    """Commit the tombstone for the vacated slot before the cleaning itself changes."""

    exclusion = record_exclusion(
        session,
        property_id=cleaning.property_id,
        original_date=cleaning.scheduled_date,
        booking_source=cleaning.booking_source,
        reason=reason,
        cleaning_id=cleaning.id,
        new_date=new_date,
        created_by=actor.id,
    )
    _record_cancellation(session, cleaning, reason=note, actor_user_id=actor.id, moved_to=new_date)
    session.commit()
    return exclusion.id


def _cancel_orders(session: Session, orders: list[LinenOrder], *, reason: str, result: dict) -> None:
    for order in orders:
        try:
            session.refresh(order)
            if order.status == OrderStatus.CANCELLED:
                result["orders_already_cancelled"] += 1
                continue
            if order.status not in CANCELLABLE_ORDER_STATUSES:
                result["orders_untouched"] += 1
                continue
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = now_utc()
            order.cancel_reason = reason
            session.commit()
            result["orders_cancelled"] += 1
        except SQLAlchemyError:
            session.rollback()
            result["orders_failed"] += 1
            _LOGGER.warning("Failed to cancel order %s", order.id, exc_info=True)


def _move_orders(
    session: Session,
    orders: list[LinenOrder],
    *,
    cleaning_id: int,
    new_date: date,
    new_time: str | None,
    result: dict,
) -> None:
    for order in orders:
        try:
            session.refresh(order)
            if order.status == OrderStatus.CANCELLED:
                result["orders_already_cancelled"] += 1
                continue
            if order.status not in CANCELLABLE_ORDER_STATUSES:
                result["orders_untouched"] += 1
                continue
            order.scheduled_date = new_date
            if new_time:
                order.scheduled_time = new_time
            if order.cleaning_id is None:
                order.cleaning_id = cleaning_id
            session.commit()
            result["orders_updated"] += 1
        except SQLAlchemyError:
            session.rollback()
            result["orders_failed"] += 1
            _LOGGER.warning("Failed to move order %s", order.id, exc_info=True)


def cancel_cleaning(
    session: Session,
    cleaning_id: int,
    *,
    reason: str,
    actor_user_id: str | None,
    delete_completely: bool = False,
) -> dict:
    """Cancel (or, for admins, hard-delete) a cleaning and cascade to its orders.

    The exclusion is committed first, then each bound order, then the
    cleaning. Repeating the call on an already cancelled cleaning only retries
    the order cascade.
    """

    cleaning = get_cleaning_or_raise(session, cleaning_id)
    actor = require_cleaning_manager(session, cleaning, actor_user_id)
    admin = is_admin(actor)
    if delete_completely and not admin:
        raise PermissionDeniedError("only an admin may delete a cleaning completely")

    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValueError(f"cancellation reason must be at least {MIN_REASON_LENGTH} characters")
    if cleaning.status == CleaningStatus.COMPLETED:
        raise InvalidStateError("completed cleanings cannot be cancelled")
    if cleaning.status == CleaningStatus.IN_PROGRESS and not admin:
        raise InvalidStateError("cleaning is in progress; only an admin can cancel it")

    result = _empty_result(cleaning.id)
    already_cancelled = cleaning.status == CleaningStatus.CANCELLED
    state_changes = delete_completely or not already_cancelled
    recipients = _assigned_operators(session, cleaning, exclude_user_id=actor.id) if state_changes else []
    label = _slot_label(session, cleaning)
    before = _snapshot(cleaning)

    if cleaning.booking_source is not None and state_changes:
        result["exclusion_id"] = _write_exclusion(
            session,
            cleaning,
            reason=ExclusionReason.DELETED if delete_completely else ExclusionReason.CANCELLED,
            actor=actor,
            note=reason,
        )

    orders = bound_orders(session, cleaning)
    _cancel_orders(session, orders, reason=f"cleaning cancelled: {reason}", result=result)

    if not state_changes:
        return result

    if delete_completely:
        session.delete(cleaning)
        result["deleted"] = True
        action = "cleaning_deleted"
    else:
        cleaning.status = CleaningStatus.CANCELLED
        cleaning.cancelled_at = now_utc()
        cleaning.cancelled_by = actor.id
        cleaning.cancellation_reason = reason
        action = "cleaning_cancelled"
    log_event(
        session,
        domain="cleanings",
        action=action,
        actor_user_id_raw=actor.id,
        payload={
            "cleaning_id": result["cleaning_id"],
            "reason": reason,
            "exclusion_id": result["exclusion_id"],
            "orders_cancelled": result["orders_cancelled"],
            "orders_untouched": result["orders_untouched"],
            "before": before,
        },
    )
    session.commit()
    _LOGGER.info("Cleaning %s %s by %s", result["cleaning_id"], "deleted" if delete_completely else "cancelled", actor.id)

    verb = "deleted" if delete_completely else "cancelled"
    notifications = [
        user_notification(
            user,
            NOTIFICATION_TITLE,
            f"{actor.display_name} {verb} the cleaning at {label}. Reason: {reason}",
            kind="cancelled",
            cleaning_id=result["cleaning_id"],
        )
        for user in recipients
    ]
    notifications.extend(
        user_notification(
            admin_user,
            NOTIFICATION_TITLE,
            f"Owner {actor.display_name} {verb} the cleaning at {label}. Reason: {reason}",
            kind="cancelled_by_owner",
            cleaning_id=result["cleaning_id"],
        )
        for admin_user in _admin_recipients(session, actor)
    )
    result["notifications"] = notifications
    return result


def move_cleaning(
    session: Session,
    cleaning_id: int,
    *,
    new_date: date,
    new_time: str | None = None,
    reason: str | None = None,
    actor_user_id: str | None,
) -> dict:
    """Move a cleaning to another day (or only another time on the same day)."""

    cleaning = get_cleaning_or_raise(session, cleaning_id)
    actor = require_cleaning_manager(session, cleaning, actor_user_id)
    if cleaning.status not in (CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED):
        raise InvalidStateError(f"cannot move a cleaning that is {cleaning.status.value}")

    result = _empty_result(cleaning.id)
    old_date = cleaning.scheduled_date
    before = _snapshot(cleaning)
    recipients = _assigned_operators(session, cleaning, exclude_user_id=actor.id)

    if new_date == old_date:
        if not new_time or new_time == cleaning.scheduled_time:
            raise InvalidStateError("new date equals the current date")
        orders = bound_orders(session, cleaning)
        _move_orders(session, orders, cleaning_id=cleaning.id, new_date=old_date, new_time=new_time, result=result)

        cleaning.scheduled_time = new_time
        cleaning.manually_modified = True
        log_event(
            session,
            domain="cleanings",
            action="cleaning_time_changed",
            actor_user_id_raw=actor.id,
            payload={
                "cleaning_id": cleaning.id,
                "orders_updated": result["orders_updated"],
                "orders_untouched": result["orders_untouched"],
                "before": before,
                "after": {"scheduled_time": new_time},
            },
        )
        session.commit()
        result["time_only"] = True
        message = f"{actor.display_name} changed the cleaning at {_slot_label(session, cleaning)} to {new_time}."
    else:
        occupant = active_cleaning_for_slot(session, cleaning.property_id, new_date)
        if occupant is not None and occupant.id != cleaning.id:
            raise InvalidStateError(f"cleaning {occupant.id} already occupies {new_date.isoformat()}")

        if cleaning.booking_source is not None:
            result["exclusion_id"] = _write_exclusion(
                session,
                cleaning,
                reason=ExclusionReason.MOVED,
                actor=actor,
                note=reason,
                new_date=new_date,
            )

        orders = bound_orders(session, cleaning, on_date=old_date)
        _move_orders(session, orders, cleaning_id=cleaning.id, new_date=new_date, new_time=new_time, result=result)

        cleaning.original_date = cleaning.original_date or old_date
        cleaning.scheduled_date = new_date
        if new_time:
            cleaning.scheduled_time = new_time
        cleaning.manually_modified = True
        cleaning.moved_at = now_utc()
        cleaning.moved_by = actor.id
        cleaning.move_reason = reason
        log_event(
            session,
            domain="cleanings",
            action="cleaning_moved",
            actor_user_id_raw=actor.id,
            payload={
                "cleaning_id": cleaning.id,
                "exclusion_id": result["exclusion_id"],
                "orders_updated": result["orders_updated"],
                "orders_untouched": result["orders_untouched"],
                "before": before,
                "after": {"scheduled_date": new_date.isoformat(), "scheduled_time": cleaning.scheduled_time},
            },
        )
        session.commit()
        _LOGGER.info("Cleaning %s moved from %s to %s by %s", cleaning.id, old_date, new_date, actor.id)
        message = (
            f"{actor.display_name} moved the cleaning at {_slot_label(session, cleaning, old_date)} "
            f"to {new_date.isoformat()}."
        )

    result["notifications"] = [
        user_notification(user, NOTIFICATION_TITLE, message, kind="moved", cleaning_id=cleaning.id)
        for user in recipients
    ]
    return result


def create_manual_cleaning(
    session: Session,
    *,
    property_id: str,
    scheduled_date: date,
    actor_user_id: str | None,
    scheduled_time: str | None = None,
    guests_count: int | None = None,
    price: float | None = None,
) -> tuple[Cleaning, LinenOrder | None]:
    """Enter a cleaning by hand for an admin or the property's owner.

    The cleaning carries no booking source, so cancelling it later writes no
    exclusion. Slots held by an active cleaning are refused.
    """

    prop = session.get(Property, property_id)
    if prop is None:
        raise NotFoundError(f"property {property_id} not found")
    actor = require_property_manager(session, property_id, actor_user_id)
    if not prop.active:
        raise InvalidStateError(f"property {property_id} is inactive")
    occupant = active_cleaning_for_slot(session, property_id, scheduled_date)
    if occupant is not None:
        raise InvalidStateError(f"cleaning {occupant.id} already occupies {scheduled_date.isoformat()}")

    cleaning = Cleaning(
        property_id=property_id,
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time or prop.checkout_time or DEFAULT_CHECKOUT_TIME,
        status=CleaningStatus.SCHEDULED,
        operators=[],
        manually_modified=True,
        guests_count=guests_count or prop.max_guests or DEFAULT_GUESTS,
        price=prop.cleaning_base_price if price is None else price,
    )
    session.add(cleaning)
    session.flush()
    order = ensure_order(session, cleaning)
    log_event(
        session,
        domain="cleanings",
        action="cleaning_created",
        actor_user_id_raw=actor.id,
        payload={
            "cleaning_id": cleaning.id,
            "property_id": property_id,
            "scheduled_date": scheduled_date.isoformat(),
            "order_id": order.id if order is not None else None,
        },
    )
    session.commit()
    _LOGGER.info("Manual cleaning %s created for %s on %s by %s", cleaning.id, property_id, scheduled_date, actor.id)
    return cleaning, order


def _require_assignable(cleaning: Cleaning) -> None:
    if cleaning.status in (CleaningStatus.CANCELLED, CleaningStatus.COMPLETED):
        raise InvalidStateError(f"cannot change operators of a cleaning that is {cleaning.status.value}")


def assign_operator(
    session: Session,
    cleaning_id: int,
    *,
    operator_id: str,
    actor_user_id: str | None,
) -> tuple[Cleaning, list[dict]]:
    cleaning = get_cleaning_or_raise(session, cleaning_id)
    actor = require_admin(session, actor_user_id)
    _require_assignable(cleaning)

    operator = get_user(session, operator_id)
    if operator is None:
        raise NotFoundError(f"operator {operator_id} not found")
    if operator.role != UserRole.OPERATOR:
        raise ValueError(f"user {operator_id} is not an operator")
    if operator.status != UserStatus.ACTIVE:
        raise InvalidStateError(f"operator {operator_id} is inactive")
    if operator.id in cleaning.operator_ids:
        raise InvalidStateError(f"operator {operator_id} is already assigned")

    before = _snapshot(cleaning)
    cleaning.operators = [*(cleaning.operators or []), {"id": operator.id, "name": operator.display_name}]
    if cleaning.status == CleaningStatus.SCHEDULED:
        cleaning.status = CleaningStatus.ASSIGNED
    log_event(
        session,
        domain="cleanings",
        action="operator_assigned",
        actor_user_id_raw=actor.id,
        payload={"cleaning_id": cleaning.id, "operator_id": operator.id, "before": before},
    )
    session.commit()

    notification = user_notification(
        operator,
        NOTIFICATION_TITLE,
        f"You have been assigned the cleaning at {_slot_label(session, cleaning)}"
        f"{' at ' + cleaning.scheduled_time if cleaning.scheduled_time else ''}.",
        kind="assigned",
        cleaning_id=cleaning.id,
    )
    return cleaning, [notification]


def unassign_operator(
    session: Session,
    cleaning_id: int,
    *,
    operator_id: str,
    actor_user_id: str | None,
) -> tuple[Cleaning, list[dict]]:
    cleaning = get_cleaning_or_raise(session, cleaning_id)
    actor = require_admin(session, actor_user_id)
    _require_assignable(cleaning)
    if operator_id not in cleaning.operator_ids:
        raise NotFoundError(f"operator {operator_id} is not assigned to cleaning {cleaning_id}")

    before = _snapshot(cleaning)
    cleaning.operators = [entry for entry in cleaning.operators if str(entry.get("id")) != operator_id]
    if not cleaning.operators and cleaning.status == CleaningStatus.ASSIGNED:
        cleaning.status = CleaningStatus.SCHEDULED
    log_event(
        session,
        domain="cleanings",
        action="operator_removed",
        actor_user_id_raw=actor.id,
        payload={"cleaning_id": cleaning.id, "operator_id": operator_id, "before": before},
    )
    session.commit()

    operator = get_user(session, operator_id)
    notification = user_notification(
        operator,
        NOTIFICATION_TITLE,
        f"You have been removed from the cleaning at {_slot_label(session, cleaning)}.",
        kind="removed",
        cleaning_id=cleaning.id,
    )
    return cleaning, [notification]
