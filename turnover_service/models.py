"""SQLAlchemy models for the turnover service."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    OPERATOR = "operator"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class BookingSource(str, Enum):
    AIRBNB = "airbnb"
    BOOKING = "booking"
    OKTORATE = "oktorate"
    MANUAL = "manual"


class CleaningStatus(str, Enum):
    SCHEDULED = "scheduled"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExclusionReason(str, Enum):
    CANCELLED = "cancelled"
    MOVED = "moved"
    DELETED = "deleted"


ACTIVE_CLEANING_STATUSES = (
    CleaningStatus.SCHEDULED,
    CleaningStatus.ASSIGNED,
    CleaningStatus.IN_PROGRESS,
)
CANCELLABLE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.ASSIGNED)


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    uses_own_linen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cleaning_base_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    service_configs: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    max_guests: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    checkout_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole), nullable=False)
    status: Mapped[UserStatus] = mapped_column(SAEnum(UserStatus), default=UserStatus.ACTIVE, nullable=False)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    notify_target: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_property_source_uid", "property_id", "source", "external_uid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source: Mapped[BookingSource] = mapped_column(SAEnum(BookingSource), nullable=False)
    external_uid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)
    guests_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class Cleaning(Base):
    __tablename__ = "cleanings"
    __table_args__ = (
        Index("ix_cleanings_property_date", "property_id", "scheduled_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    status: Mapped[CleaningStatus] = mapped_column(
        SAEnum(CleaningStatus),
        default=CleaningStatus.SCHEDULED,
        nullable=False,
    )
    booking_source: Mapped[BookingSource | None] = mapped_column(SAEnum(BookingSource), nullable=True)
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    operators: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    manually_modified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    original_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    guests_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    moved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    moved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    move_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    @property
    def operator_ids(self) -> list[str]:
        return [str(entry["id"]) for entry in (self.operators or []) if entry.get("id")]

    @property
    def primary_operator_id(self) -> str | None:
        ids = self.operator_ids
        return ids[0] if ids else None


class LinenOrder(Base):
    __tablename__ = "linen_orders"
    __table_args__ = (
        Index("ix_linen_orders_property_date", "property_id", "scheduled_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cleaning_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(SAEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    items: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    total_price_override: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class SyncExclusion(Base):
    __tablename__ = "sync_exclusions"
    __table_args__ = (
        Index("ix_sync_exclusions_slot", "property_id", "original_date", "booking_source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_source: Mapped[BookingSource] = mapped_column(SAEnum(BookingSource), nullable=False)
    reason: Mapped[ExclusionReason] = mapped_column(SAEnum(ExclusionReason), nullable=False)
    new_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cleaning_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class CancelledCleaningRecord(Base):
    __tablename__ = "cancelled_cleaning_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    original_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_source: Mapped[BookingSource | None] = mapped_column(SAEnum(BookingSource), nullable=True)
    booking_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cleaning_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    moved_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    actor_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class ActivityEvent(Base):
    __tablename__ = "activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_user_id_raw: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
