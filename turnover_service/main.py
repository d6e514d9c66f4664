"""FastAPI entrypoint for the turnover service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import db
from .db import Base, get_session
from .models import Cleaning, CleaningStatus, LinenOrder, Property, User
from .schemas import (
    ActivityEventResponse,
    ActorRequest,
    AssignOperatorRequest,
    BackfillRequest,
    BookingSyncRequest,
    BookingSyncResponse,
    CancelCleaningRequest,
    CascadeResponse,
    CleaningResponse,
    DuplicateOrdersRequest,
    ExclusionResponse,
    GhostPurgeRequest,
    InventoryPricesRequest,
    ManualCleaningRequest,
    MoveCleaningRequest,
    OperationResponse,
    OrderResponse,
    PropertiesSyncRequest,
    PropertyResponse,
    ReconcileRequest,
    StaleCleaningsRequest,
    SuggestionsResponse,
    UserResponse,
    UsersSyncRequest,
)
from .services import advisor, audit, cascade, directory, sync
from .services.access import NotFoundError, PermissionDeniedError, get_cleaning_or_raise, require_admin
from .services.activity import list_events
from .services.exclusions import list_exclusions
from .services.linen import backfill_missing_orders, load_price_list, order_total
from .services.notifications import dispatch
from .settings import settings


@asynccontextmanager
async def lifespan(_app: FastAPI):
    db.configure_engine()
    db.ensure_db_dir()
    assert db.engine is not None
    Base.metadata.create_all(bind=db.engine)
    yield


app = FastAPI(title="turnover-service", version="0.1.0", lifespan=lifespan)


def require_token(x_turnover_token: str | None = Header(default=None)) -> None:
    if x_turnover_token != settings.api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _cleaning_response(row: Cleaning) -> CleaningResponse:
    return CleaningResponse(
        id=row.id,
        property_id=row.property_id,
        scheduled_date=row.scheduled_date,
        scheduled_time=row.scheduled_time,
        status=row.status.value,
        booking_source=row.booking_source.value if row.booking_source else None,
        booking_id=row.booking_id,
        operators=row.operators or [],
        primary_operator_id=row.primary_operator_id,
        manually_modified=row.manually_modified,
        original_date=row.original_date,
        price=row.price,
        guests_count=row.guests_count,
        created_at=row.created_at,
    )


def _property_response(row: Property) -> PropertyResponse:
    return PropertyResponse(
        id=row.id,
        name=row.name,
        owner_user_id=row.owner_user_id,
        active=row.active,
        uses_own_linen=row.uses_own_linen,
        cleaning_base_price=row.cleaning_base_price,
        max_guests=row.max_guests,
        bedrooms=row.bedrooms,
        bathrooms=row.bathrooms,
        checkout_time=row.checkout_time,
    )


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.get("/v1/properties", response_model=list[PropertyResponse], dependencies=[Depends(require_token)])
def get_properties(session: Session = Depends(get_session)) -> list[PropertyResponse]:
    return [_property_response(row) for row in directory.list_properties(session)]


@app.put("/v1/properties/sync", response_model=list[PropertyResponse], dependencies=[Depends(require_token)])
def put_properties_sync(
    payload: PropertiesSyncRequest,
    session: Session = Depends(get_session),
) -> list[PropertyResponse]:
    return [_property_response(row) for row in directory.sync_properties(session, payload.properties)]


@app.delete("/v1/properties/{property_id}", response_model=OperationResponse, dependencies=[Depends(require_token)])
def delete_property(
    property_id: str,
    payload: ActorRequest,
    session: Session = Depends(get_session),
) -> OperationResponse:
    try:
        directory.delete_property(session, property_id, actor_user_id=payload.actor_user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return OperationResponse(ok=True)


@app.get("/v1/users", response_model=list[UserResponse], dependencies=[Depends(require_token)])
def get_users(session: Session = Depends(get_session)) -> list[UserResponse]:
    rows = session.execute(select(User).order_by(User.display_name.asc(), User.id.asc())).scalars().all()
    return [
        UserResponse(
            id=row.id,
            display_name=row.display_name,
            role=row.role.value,
            status=row.status.value,
            rating=row.rating,
            notify_target=row.notify_target,
        )
        for row in rows
    ]


@app.put("/v1/users/sync", response_model=list[UserResponse], dependencies=[Depends(require_token)])
def put_users_sync(
    payload: UsersSyncRequest,
    session: Session = Depends(get_session),
) -> list[UserResponse]:
    rows = directory.sync_users(session, payload.users, deactivate_missing=payload.deactivate_missing)
    return [
        UserResponse(
            id=row.id,
            display_name=row.display_name,
            role=row.role.value,
            status=row.status.value,
            rating=row.rating,
            notify_target=row.notify_target,
        )
        for row in rows
    ]


@app.put("/v1/inventory/prices", dependencies=[Depends(require_token)])
def put_inventory_prices(
    payload: InventoryPricesRequest,
    session: Session = Depends(get_session),
) -> dict:
    return {"prices": directory.sync_price_list(session, payload.items)}


@app.post("/v1/sync/bookings", response_model=BookingSyncResponse, dependencies=[Depends(require_token)])
def post_sync_bookings(
    payload: BookingSyncRequest,
    session: Session = Depends(get_session),
) -> BookingSyncResponse:
    result = sync.reconcile(
        session,
        payload.bookings,
        prune_missing=payload.prune_missing,
        actor_user_id=payload.actor_user_id,
    )
    return BookingSyncResponse(**result)


@app.get("/v1/cleanings", response_model=list[CleaningResponse], dependencies=[Depends(require_token)])
def get_cleanings(
    property_id: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    session: Session = Depends(get_session),
) -> list[CleaningResponse]:
    query = select(Cleaning)
    if property_id:
        query = query.where(Cleaning.property_id == property_id)
    if date_from is not None:
        query = query.where(Cleaning.scheduled_date >= date_from)
    if date_to is not None:
        query = query.where(Cleaning.scheduled_date <= date_to)
    if not include_cancelled:
        query = query.where(Cleaning.status != CleaningStatus.CANCELLED)
    rows = session.execute(query.order_by(Cleaning.scheduled_date.asc(), Cleaning.id.asc())).scalars().all()
    return [_cleaning_response(row) for row in rows]


@app.post("/v1/cleanings", response_model=CleaningResponse, dependencies=[Depends(require_token)])
def post_cleaning(
    payload: ManualCleaningRequest,
    session: Session = Depends(get_session),
) -> CleaningResponse:
    try:
        cleaning, _order = cascade.create_manual_cleaning(
            session,
            property_id=payload.property_id,
            scheduled_date=payload.scheduled_date,
            scheduled_time=payload.scheduled_time,
            guests_count=payload.guests_count,
            price=payload.price,
            actor_user_id=payload.actor_user_id,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _cleaning_response(cleaning)


@app.get("/v1/cleanings/{cleaning_id}", response_model=CleaningResponse, dependencies=[Depends(require_token)])
def get_cleaning(cleaning_id: int, session: Session = Depends(get_session)) -> CleaningResponse:
    try:
        row = get_cleaning_or_raise(session, cleaning_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _cleaning_response(row)


@app.post(
    "/v1/cleanings/{cleaning_id}/cancel",
    response_model=CascadeResponse,
    dependencies=[Depends(require_token)],
)
def post_cleaning_cancel(
    cleaning_id: int,
    payload: CancelCleaningRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> CascadeResponse:
    try:
        result = cascade.cancel_cleaning(
            session,
            cleaning_id,
            reason=payload.reason,
            actor_user_id=payload.actor_user_id,
            delete_completely=payload.delete_completely,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(dispatch, result["notifications"])
    return CascadeResponse(**result)


@app.post(
    "/v1/cleanings/{cleaning_id}/move",
    response_model=CascadeResponse,
    dependencies=[Depends(require_token)],
)
def post_cleaning_move(
    cleaning_id: int,
    payload: MoveCleaningRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> CascadeResponse:
    try:
        result = cascade.move_cleaning(
            session,
            cleaning_id,
            new_date=payload.new_date,
            new_time=payload.new_time,
            reason=payload.reason,
            actor_user_id=payload.actor_user_id,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(dispatch, result["notifications"])
    return CascadeResponse(**result)


@app.post(
    "/v1/cleanings/{cleaning_id}/operators",
    response_model=OperationResponse,
    dependencies=[Depends(require_token)],
)
def post_cleaning_operator(
    cleaning_id: int,
    payload: AssignOperatorRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> OperationResponse:
    try:
        cleaning, notifications = cascade.assign_operator(
            session,
            cleaning_id,
            operator_id=payload.operator_id,
            actor_user_id=payload.actor_user_id,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(dispatch, notifications)
    return OperationResponse(ok=True, id=cleaning.id, notifications=notifications)


@app.delete(
    "/v1/cleanings/{cleaning_id}/operators/{operator_id}",
    response_model=OperationResponse,
    dependencies=[Depends(require_token)],
)
def delete_cleaning_operator(
    cleaning_id: int,
    operator_id: str,
    payload: ActorRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> OperationResponse:
    try:
        cleaning, notifications = cascade.unassign_operator(
            session,
            cleaning_id,
            operator_id=operator_id,
            actor_user_id=payload.actor_user_id,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(dispatch, notifications)
    return OperationResponse(ok=True, id=cleaning.id, notifications=notifications)


@app.get(
    "/v1/cleanings/{cleaning_id}/suggestions",
    response_model=SuggestionsResponse,
    dependencies=[Depends(require_token)],
)
def get_cleaning_suggestions(
    cleaning_id: int,
    limit: int = Query(default=5, ge=1, le=50),
    session: Session = Depends(get_session),
) -> SuggestionsResponse:
    try:
        suggestions = advisor.suggest_for_cleaning(session, cleaning_id, limit=limit)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return SuggestionsResponse(cleaning_id=cleaning_id, suggestions=suggestions)


@app.get("/v1/orders", response_model=list[OrderResponse], dependencies=[Depends(require_token)])
def get_orders(
    property_id: str | None = Query(default=None),
    cleaning_id: int | None = Query(default=None),
    session: Session = Depends(get_session),
) -> list[OrderResponse]:
    query = select(LinenOrder)
    if property_id:
        query = query.where(LinenOrder.property_id == property_id)
    if cleaning_id is not None:
        query = query.where(LinenOrder.cleaning_id == cleaning_id)
    prices = load_price_list(session)
    rows = session.execute(query.order_by(LinenOrder.scheduled_date.asc(), LinenOrder.id.asc())).scalars().all()
    return [
        OrderResponse(
            id=row.id,
            property_id=row.property_id,
            cleaning_id=row.cleaning_id,
            scheduled_date=row.scheduled_date,
            scheduled_time=row.scheduled_time,
            status=row.status.value,
            items=row.items or [],
            total_price_override=row.total_price_override,
            total=order_total(row, prices),
        )
        for row in rows
    ]


@app.get("/v1/exclusions", response_model=list[ExclusionResponse], dependencies=[Depends(require_token)])
def get_exclusions(
    property_id: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    session: Session = Depends(get_session),
) -> list[ExclusionResponse]:
    return [
        ExclusionResponse(
            id=row.id,
            property_id=row.property_id,
            original_date=row.original_date,
            booking_source=row.booking_source.value,
            reason=row.reason.value,
            new_date=row.new_date,
            cleaning_id=row.cleaning_id,
            created_by=row.created_by,
            created_at=row.created_at,
        )
        for row in list_exclusions(session, property_id=property_id, limit=limit)
    ]


@app.post("/v1/admin/reconcile", dependencies=[Depends(require_token)])
def post_admin_reconcile(
    payload: ReconcileRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        if not payload.dry_run:
            require_admin(session, payload.actor_user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return audit.run_audit(
        session,
        dry_run=payload.dry_run,
        property_id=payload.property_id,
        date_from=payload.date_from,
        date_to=payload.date_to,
        days_back=payload.days_back,
        actor_user_id=payload.actor_user_id,
    )


@app.post("/v1/admin/backfill-orders", dependencies=[Depends(require_token)])
def post_admin_backfill_orders(
    payload: BackfillRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        if not payload.dry_run:
            require_admin(session, payload.actor_user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return backfill_missing_orders(
        session,
        days_back=settings.backfill_days_back if payload.days_back is None else payload.days_back,
        dry_run=payload.dry_run,
        property_id=payload.property_id,
    )


@app.get("/v1/admin/audit-report", dependencies=[Depends(require_token)])
def get_admin_audit_report(
    property_id: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    session: Session = Depends(get_session),
) -> dict:
    return audit.run_audit(
        session,
        dry_run=True,
        property_id=property_id,
        date_from=date_from,
        date_to=date_to,
    )


@app.post("/v1/admin/ghost-orders/purge", dependencies=[Depends(require_token)])
def post_admin_ghost_orders_purge(
    payload: GhostPurgeRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        return audit.purge_ghost_orders(session, payload.order_ids, actor_user_id=payload.actor_user_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/v1/admin/duplicate-orders/resolve", dependencies=[Depends(require_token)])
def post_admin_duplicate_orders_resolve(
    payload: DuplicateOrdersRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        return audit.resolve_duplicate_orders(
            session,
            actor_user_id=payload.actor_user_id,
            property_id=payload.property_id,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/v1/admin/stale-cleanings/cancel", dependencies=[Depends(require_token)])
def post_admin_stale_cleanings_cancel(
    payload: StaleCleaningsRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> dict:
    try:
        outcome = audit.cancel_stale_cleanings(
            session,
            actor_user_id=payload.actor_user_id,
            cleaning_ids=payload.cleaning_ids,
            property_id=payload.property_id,
            delete_completely=payload.delete_completely,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(dispatch, outcome["notifications"])
    return outcome


@app.get("/v1/activity", response_model=list[ActivityEventResponse], dependencies=[Depends(require_token)])
def get_activity(
    domain: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    session: Session = Depends(get_session),
) -> list[ActivityEventResponse]:
    return [
        ActivityEventResponse(
            id=row.id,
            domain=row.domain,
            action=row.action,
            actor_user_id_raw=row.actor_user_id_raw,
            payload_json=row.payload_json,
            created_at=row.created_at,
        )
        for row in list_events(session, domain=domain, limit=limit)
    ]
