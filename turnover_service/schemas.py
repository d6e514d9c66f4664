"""Pydantic schemas for API contracts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, NonNegativeInt, field_validator

from .models import BookingSource, UserRole, UserStatus

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def _lower_enum_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class GuestServiceConfig(BaseModel):
    """Linen bill of materials for one guest count: beds, bathroom, kitchen."""

    bl: dict[str, dict[str, NonNegativeInt]] = Field(default_factory=dict)
    ba: dict[str, NonNegativeInt] = Field(default_factory=dict)
    ki: dict[str, NonNegativeInt] = Field(default_factory=dict)


class PropertySyncItem(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    owner_user_id: str | None = None
    active: bool = True
    uses_own_linen: bool = False
    cleaning_base_price: float = Field(default=0.0, ge=0)
    service_configs: dict[str, GuestServiceConfig] = Field(default_factory=dict)
    max_guests: int | None = Field(default=None, ge=1)
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: int | None = Field(default=None, ge=0)
    checkout_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    latitude: float | None = None
    longitude: float | None = None

    @field_validator("service_configs")
    @classmethod
    def guest_count_keys(cls, value: dict[str, GuestServiceConfig]) -> dict[str, GuestServiceConfig]:
        for key in value:
            if not key.isdigit() or int(key) < 1:
                raise ValueError(f"service config key {key!r} is not a guest count")
        return value


class PropertiesSyncRequest(BaseModel):
    properties: list[PropertySyncItem]


class PropertyResponse(BaseModel):
    id: str
    name: str
    owner_user_id: str | None
    active: bool
    uses_own_linen: bool
    cleaning_base_price: float
    max_guests: int | None
    bedrooms: int | None
    bathrooms: int | None
    checkout_time: str | None


class UserSyncItem(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(min_length=1, max_length=120)
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    rating: float | None = Field(default=None, ge=0, le=5)
    latitude: float | None = None
    longitude: float | None = None
    notify_target: str | None = None

    normalize_enums = field_validator("role", "status", mode="before")(_lower_enum_value)


class UsersSyncRequest(BaseModel):
    users: list[UserSyncItem]
    deactivate_missing: bool = True


class UserResponse(BaseModel):
    id: str
    display_name: str
    role: str
    status: str
    rating: float | None
    notify_target: str | None


class InventoryPriceItem(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: str | None = None
    unit_price: float = Field(ge=0)


class InventoryPricesRequest(BaseModel):
    items: list[InventoryPriceItem]


class BookingFeedItem(BaseModel):
    property_id: str = Field(min_length=1)
    check_in: datetime | date
    check_out: datetime | date
    source: BookingSource
    external_uid: str | None = None
    guests_count: int | None = Field(default=None, ge=1)

    normalize_source = field_validator("source", mode="before")(_lower_enum_value)


class BookingSyncRequest(BaseModel):
    bookings: list[BookingFeedItem]
    prune_missing: bool = False
    actor_user_id: str | None = None


class BookingSyncResponse(BaseModel):
    created: int
    skipped: int
    updated: int
    excluded: int
    orders_created: int
    bookings_created: int
    bookings_removed: int
    stale_cleanings: int
    errors: int


class NotificationItem(BaseModel):
    user_id: str | None
    notify_target: str | None
    title: str
    message: str
    category: str = "turnover"
    kind: str | None = None
    cleaning_id: int | None = None


class OperatorRef(BaseModel):
    id: str
    name: str | None = None


class CleaningResponse(BaseModel):
    id: int
    property_id: str
    scheduled_date: date
    scheduled_time: str | None
    status: str
    booking_source: str | None
    booking_id: int | None
    operators: list[OperatorRef]
    primary_operator_id: str | None
    manually_modified: bool
    original_date: date | None
    price: float | None
    guests_count: int | None
    created_at: datetime


class CancelCleaningRequest(BaseModel):
    actor_user_id: str | None = None
    reason: str = ""
    delete_completely: bool = False


class MoveCleaningRequest(BaseModel):
    actor_user_id: str | None = None
    new_date: date
    new_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    reason: str | None = None


class AssignOperatorRequest(BaseModel):
    actor_user_id: str | None = None
    operator_id: str = Field(min_length=1)


class ActorRequest(BaseModel):
    actor_user_id: str | None = None


class CascadeResponse(BaseModel):
    ok: bool = True
    cleaning_id: int
    deleted: bool = False
    time_only: bool = False
    exclusion_id: int | None = None
    orders_cancelled: int = 0
    orders_updated: int = 0
    orders_untouched: int = 0
    orders_already_cancelled: int = 0
    orders_failed: int = 0
    notifications: list[NotificationItem] = Field(default_factory=list)


class OperationResponse(BaseModel):
    ok: bool = True
    id: int | None = None
    notifications: list[NotificationItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    item_id: str
    quantity: int
    unit_price: float | None = None


class OrderResponse(BaseModel):
    id: int
    property_id: str
    cleaning_id: int | None
    scheduled_date: date
    scheduled_time: str | None
    status: str
    items: list[OrderItem]
    total_price_override: float | None
    total: float


class ExclusionResponse(BaseModel):
    id: int
    property_id: str
    original_date: date
    booking_source: str
    reason: str
    new_date: date | None
    cleaning_id: int | None
    created_by: str | None
    created_at: datetime


class ReconcileRequest(BaseModel):
    actor_user_id: str | None = None
    dry_run: bool = True
    property_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    days_back: int | None = Field(default=None, ge=0, le=3650)


class BackfillRequest(BaseModel):
    actor_user_id: str | None = None
    days_back: int | None = Field(default=None, ge=0, le=3650)
    dry_run: bool = False
    property_id: str | None = None


class GhostPurgeRequest(BaseModel):
    actor_user_id: str | None = None
    order_ids: list[int] = Field(min_length=1)


class DuplicateOrdersRequest(BaseModel):
    actor_user_id: str | None = None
    property_id: str | None = None


class StaleCleaningsRequest(BaseModel):
    actor_user_id: str | None = None
    cleaning_ids: list[int] | None = None
    property_id: str | None = None
    delete_completely: bool = False


class ManualCleaningRequest(BaseModel):
    actor_user_id: str | None = None
    property_id: str = Field(min_length=1)
    scheduled_date: date
    scheduled_time: str | None = Field(default=None, pattern=TIME_PATTERN)
    guests_count: int | None = Field(default=None, ge=1)
    price: float | None = Field(default=None, ge=0)


class SuggestionEntry(BaseModel):
    operator_id: str
    name: str
    total: int
    proximity: int
    familiarity: int
    workload: int
    performance: int
    distance_km: float | None
    assignments_today: int
    is_recommended: bool
    warnings: list[str]


class SuggestionsResponse(BaseModel):
    cleaning_id: int
    suggestions: list[SuggestionEntry]


class ActivityEventResponse(BaseModel):
    id: int
    domain: str
    action: str
    actor_user_id_raw: str | None
    payload_json: dict[str, Any]
    created_at: datetime
