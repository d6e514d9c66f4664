"""Actor resolution, authorization checks and domain error types."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Cleaning, Property, User, UserRole, UserStatus


class TurnoverError(ValueError):
    """Base class for domain errors surfaced to API callers."""


class NotFoundError(TurnoverError):
    """Raised when a referenced cleaning, property, order or user is missing."""


class PermissionDeniedError(TurnoverError):
    """Raised when the actor may not perform the requested operation."""


class InvalidStateError(TurnoverError):
    """Raised when an operation is not valid for the record's current status."""


def get_user(session: Session, user_id: str | None) -> User | None:
    if not user_id:
        return None
    return session.get(User, user_id)


def is_admin(user: User | None) -> bool:
    return user is not None and user.role == UserRole.ADMIN and user.status == UserStatus.ACTIVE


def require_actor(session: Session, actor_user_id: str | None) -> User:
    """Resolve the acting user; unknown or inactive users are rejected."""

    actor = get_user(session, actor_user_id)
    if actor is None or actor.status != UserStatus.ACTIVE:
        raise PermissionDeniedError("actor is not a known active user")
    return actor


def require_admin(session: Session, actor_user_id: str | None) -> User:
    actor = require_actor(session, actor_user_id)
    if not is_admin(actor):
        raise PermissionDeniedError("admin role required")
    return actor


def require_property_manager(session: Session, property_id: str, actor_user_id: str | None) -> User:
    """Allow admins and the owner of the property."""

    actor = require_actor(session, actor_user_id)
    if is_admin(actor):
        return actor
    prop = session.get(Property, property_id)
    if actor.role == UserRole.OWNER and prop is not None and prop.owner_user_id == actor.id:
        return actor
    raise PermissionDeniedError("only an admin or the property owner may change this cleaning")


def require_cleaning_manager(session: Session, cleaning: Cleaning, actor_user_id: str | None) -> User:
    return require_property_manager(session, cleaning.property_id, actor_user_id)


def get_cleaning_or_raise(session: Session, cleaning_id: int) -> Cleaning:
    cleaning = session.get(Cleaning, cleaning_id)
    if cleaning is None:
        raise NotFoundError(f"cleaning {cleaning_id} not found")
    return cleaning


def active_admins(session: Session) -> list[User]:
    return session.execute(
        select(User)
        .where(User.role == UserRole.ADMIN, User.status == UserStatus.ACTIVE)
        .order_by(User.id.asc())
    ).scalars().all()
