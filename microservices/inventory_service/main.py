"""Inventory Ledger Service API with NATS Event Integration and PostgreSQL."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import settings
from core.logger import setup_service_logger
from core.nats_client import close_event_bus, get_event_bus

from .factory import create_stock_ledger
from .models import (
    AdjustRequest,
    AlertActionRequest,
    AlertFilter,
    AlertListResponse,
    AlertStatus,
    AlertType,
    BatchAdjustmentResult,
    BatchAdjustRequest,
    BulkReservationResult,
    BulkReserveRequest,
    CommitRequest,
    ErrorResponse,
    ExtendRequest,
    MovementFilter,
    MovementType,
    ReconciliationReport,
    RegisterItemRequest,
    ReleaseRequest,
    ReservationFilter,
    ReservationStatus,
    ReservationTransition,
    ReservationValidation,
    ReserveRequest,
    SnoozeAlertRequest,
    StockAlert,
    StockLevel,
    StockLevelFilter,
    StockListResponse,
    StockMovement,
    StockReservation,
    SweepResponse,
    ThresholdUpdateRequest,
    utc_now,
)
from .protocols import (
    AlertNotFoundError,
    ContentionError,
    DuplicateStockLevelError,
    InsufficientStockError,
    InvalidAdjustmentError,
    InvalidAlertTransitionError,
    InvalidQuantityError,
    InventoryError,
    RepositoryUnavailableError,
    ReservationNotFoundError,
    ReservationTerminalError,
    StockLevelNotFoundError,
)
from .routes_registry import SERVICE_METADATA
from .stock_ledger import StockLedger
from .sweeper import ReservationSweeper

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/inventory"

ERROR_STATUS = {
    InsufficientStockError: status.HTTP_409_CONFLICT,
    StockLevelNotFoundError: status.HTTP_404_NOT_FOUND,
    ReservationNotFoundError: status.HTTP_404_NOT_FOUND,
    AlertNotFoundError: status.HTTP_404_NOT_FOUND,
    ReservationTerminalError: status.HTTP_409_CONFLICT,
    ContentionError: status.HTTP_409_CONFLICT,
    InvalidAdjustmentError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidQuantityError: status.HTTP_400_BAD_REQUEST,
    InvalidAlertTransitionError: status.HTTP_409_CONFLICT,
    DuplicateStockLevelError: status.HTTP_409_CONFLICT,
    RepositoryUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

event_bus = None
ledger: Optional[StockLedger] = None
sweeper: Optional[ReservationSweeper] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global event_bus, ledger, sweeper

    setup_service_logger(settings.service_name, settings.logging)

    # Initialize ledger (PostgreSQL)
    try:
        ledger = await create_stock_ledger(settings)
        logger.info("Stock ledger initialized with PostgreSQL")
    except InventoryError as e:
        logger.error(f"Failed to initialize stock ledger: {e}")
        ledger = None

    # Initialize event bus for event-driven communication
    if settings.infra.nats_enabled:
        try:
            event_bus = await get_event_bus(settings.service_name, config=settings.infra)
            logger.info("Event bus initialized successfully")
        except Exception as e:
            logger.warning(f"Failed to initialize event bus: {e}. Continuing without event publishing.")
            event_bus = None

    if ledger and event_bus:
        ledger.set_event_bus(event_bus)

        from .events.handlers import get_event_handlers
        handler_map = get_event_handlers(ledger)
        for event_pattern, handler_func in handler_map.items():
            await event_bus.subscribe_to_events(pattern=event_pattern, handler=handler_func)
        logger.info(f"Event handlers registered - Subscribed to {len(handler_map)} event types")

    # Reservation expiry sweep
    if ledger and settings.reservations.sweep_enabled:
        sweeper = ReservationSweeper(
            ledger,
            interval_seconds=settings.reservations.sweep_interval_seconds,
            batch_size=settings.reservations.sweep_batch_size,
        )
        sweeper.start()

    logger.info("Inventory Service started")

    yield

    # Cleanup
    if sweeper:
        await sweeper.stop()
        sweeper = None

    if event_bus:
        try:
            await close_event_bus()
            logger.info("Event bus closed")
        except Exception as e:
            logger.error(f"Error closing event bus: {e}")
        event_bus = None

    if ledger:
        await ledger.close()

    logger.info("Inventory Service shutting down...")


app = FastAPI(title=SERVICE_METADATA["service_name"], version=SERVICE_METADATA["version"], lifespan=lifespan)


def _status_for(error: InventoryError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=exc.message, code=exc.code, context=exc.context).model_dump(mode="json"),
    )


def get_ledger() -> StockLedger:
    if ledger is None:
        raise HTTPException(status_code=503, detail="Stock ledger not available")
    return ledger


# ==================== Health ====================

@app.get(f"{API_PREFIX}/health")
@app.get("/health")
async def health():
    database = await ledger.health_check() if ledger else False
    return {
        "status": "ok" if database else "degraded",
        "service": SERVICE_METADATA["service_name"],
        "database": database,
        "event_bus": bool(event_bus and event_bus.is_connected),
        "subscriptions": event_bus.subscribed_patterns if event_bus else [],
        "sweeper": bool(sweeper and sweeper.running),
    }


# ==================== Stock Levels ====================

@app.post(f"{API_PREFIX}/stock", response_model=StockLevel, status_code=status.HTTP_201_CREATED)
async def register_item(request: RegisterItemRequest, ledger: StockLedger = Depends(get_ledger)):
    """Register an item at a location with its initial quantity"""
    return await ledger.register_item(
        request.item_id,
        request.location_id,
        initial_quantity=request.initial_quantity,
        reorder_point=request.reorder_point,
        maximum_stock=request.maximum_stock,
        reason=request.reason,
        actor_ref=request.actor_ref,
    )


@app.get(f"{API_PREFIX}/stock", response_model=StockListResponse)
async def list_stock_levels(
    location_id: Optional[str] = None,
    item_id: Optional[str] = None,
    low_stock_only: bool = False,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    ledger: StockLedger = Depends(get_ledger),
):
    """Stock levels with item, low-stock and active alert totals for the location"""
    levels = await ledger.list_stock_levels(StockLevelFilter(
        item_id=item_id,
        location_id=location_id,
        low_stock_only=low_stock_only,
        limit=limit,
        offset=offset,
    ))
    summary = await ledger.stock_summary(location_id)
    return StockListResponse(levels=levels, summary=summary)


@app.get(f"{API_PREFIX}/stock/{{item_id}}/{{location_id}}", response_model=StockLevel)
async def get_stock_level(item_id: str, location_id: str, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.query(item_id, location_id)


@app.post(f"{API_PREFIX}/stock/adjust/batch", response_model=List[BatchAdjustmentResult])
async def adjust_batch(request: BatchAdjustRequest, ledger: StockLedger = Depends(get_ledger)):
    """Apply delta or absolute updates to many item/locations"""
    return await ledger.adjust_batch(request.entries, request.reason, request.actor_ref)


@app.post(f"{API_PREFIX}/stock/{{item_id}}/{{location_id}}/adjust", response_model=StockLevel)
async def adjust_stock(
    item_id: str,
    location_id: str,
    request: AdjustRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    """Restock or correct on-hand quantity"""
    return await ledger.adjust(
        item_id,
        location_id,
        request.delta,
        request.reason,
        request.actor_ref,
        movement_type=request.movement_type,
        idempotency_key=request.idempotency_key,
    )


@app.patch(f"{API_PREFIX}/stock/{{item_id}}/{{location_id}}/thresholds", response_model=StockLevel)
async def update_thresholds(
    item_id: str,
    location_id: str,
    request: ThresholdUpdateRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.update_thresholds(
        item_id,
        location_id,
        reorder_point=request.reorder_point,
        maximum_stock=request.maximum_stock,
        clear_maximum_stock=request.clear_maximum_stock,
        actor_ref=request.actor_ref,
    )


@app.get(f"{API_PREFIX}/stock/{{item_id}}/{{location_id}}/reconcile", response_model=ReconciliationReport)
async def reconcile_stock(item_id: str, location_id: str, ledger: StockLedger = Depends(get_ledger)):
    """Replay the movement trail against the stored level"""
    return await ledger.reconcile(item_id, location_id)


# ==================== Reservations ====================

@app.post(f"{API_PREFIX}/reservations", response_model=StockReservation, status_code=status.HTTP_201_CREATED)
async def create_reservation(request: ReserveRequest, ledger: StockLedger = Depends(get_ledger)):
    ttl = timedelta(minutes=request.ttl_minutes) if request.ttl_minutes else None
    return await ledger.reserve(
        request.item_id, request.location_id, request.quantity, request.holder_ref, ttl
    )


@app.post(f"{API_PREFIX}/reservations/bulk", response_model=BulkReservationResult)
async def create_bulk_reservation(request: BulkReserveRequest, ledger: StockLedger = Depends(get_ledger)):
    """Reserve every line of a cart for one holder"""
    ttl = timedelta(minutes=request.ttl_minutes) if request.ttl_minutes else None
    return await ledger.reserve_many(
        request.holder_ref, request.lines, ttl, all_or_nothing=request.all_or_nothing
    )


@app.post(f"{API_PREFIX}/reservations/sweep", response_model=SweepResponse)
async def sweep_reservations(ledger: StockLedger = Depends(get_ledger)):
    """Expire reservations past their TTL now"""
    swept_at = utc_now()
    expired = await ledger.sweep_expired(now=swept_at)
    return SweepResponse(expired=expired, swept_at=swept_at)


@app.get(f"{API_PREFIX}/reservations", response_model=List[StockReservation])
async def list_reservations(
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    holder_ref: Optional[str] = None,
    reservation_status: Optional[ReservationStatus] = Query(default=None, alias="status"),
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.list_reservations(ReservationFilter(
        item_id=item_id,
        location_id=location_id,
        holder_ref=holder_ref,
        status=reservation_status,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    ))


@app.get(f"{API_PREFIX}/reservations/{{reservation_id}}", response_model=StockReservation)
async def get_reservation(reservation_id: str, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.get_reservation(reservation_id)


@app.get(f"{API_PREFIX}/reservations/{{reservation_id}}/validate", response_model=ReservationValidation)
async def validate_reservation(reservation_id: str, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.validate_reservation(reservation_id)


@app.post(f"{API_PREFIX}/reservations/{{reservation_id}}/extend", response_model=StockReservation)
async def extend_reservation(
    reservation_id: str,
    request: ExtendRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.extend(reservation_id, timedelta(minutes=request.additional_minutes))


@app.post(f"{API_PREFIX}/reservations/{{reservation_id}}/release", response_model=ReservationTransition)
async def release_reservation(
    reservation_id: str,
    request: Optional[ReleaseRequest] = None,
    ledger: StockLedger = Depends(get_ledger),
):
    """Release a hold; a terminal reservation reports applied=false"""
    request = request or ReleaseRequest()
    return await ledger.release(reservation_id, reason=request.reason)


@app.post(f"{API_PREFIX}/reservations/{{reservation_id}}/commit", response_model=ReservationTransition)
async def commit_reservation(
    reservation_id: str,
    request: Optional[CommitRequest] = None,
    ledger: StockLedger = Depends(get_ledger),
):
    """Commit a hold as a sale; a terminal reservation reports applied=false"""
    request = request or CommitRequest()
    return await ledger.commit_sale(reservation_id, reference_id=request.reference_id)


# ==================== Movements ====================

@app.get(f"{API_PREFIX}/movements", response_model=List[StockMovement])
async def list_movements(
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    movement_type: Optional[MovementType] = None,
    reference_id: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.list_movements(MovementFilter(
        item_id=item_id,
        location_id=location_id,
        movement_type=movement_type,
        reference_id=reference_id,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    ))


# ==================== Alerts ====================

@app.get(f"{API_PREFIX}/alerts", response_model=AlertListResponse)
async def list_alerts(
    item_id: Optional[str] = None,
    location_id: Optional[str] = None,
    alert_type: Optional[AlertType] = None,
    alert_status: Optional[AlertStatus] = Query(default=None, alias="status"),
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    ledger: StockLedger = Depends(get_ledger),
):
    """Alerts newest first, with counts by type and status"""
    filters = AlertFilter(
        item_id=item_id,
        location_id=location_id,
        alert_type=alert_type,
        status=alert_status,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    )
    alerts = await ledger.list_alerts(filters)
    stats = await ledger.alert_stats(filters)
    return AlertListResponse(alerts=alerts, stats=stats)


@app.get(f"{API_PREFIX}/alerts/{{alert_id}}", response_model=StockAlert)
async def get_alert(alert_id: str, ledger: StockLedger = Depends(get_ledger)):
    return await ledger.get_alert(alert_id)


@app.post(f"{API_PREFIX}/alerts/{{alert_id}}/acknowledge", response_model=StockAlert)
async def acknowledge_alert(
    alert_id: str,
    request: AlertActionRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.acknowledge_alert(alert_id, request.actor_ref)


@app.post(f"{API_PREFIX}/alerts/{{alert_id}}/resolve", response_model=StockAlert)
async def resolve_alert(
    alert_id: str,
    request: AlertActionRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.resolve_alert(alert_id, request.actor_ref, request.notes)


@app.post(f"{API_PREFIX}/alerts/{{alert_id}}/snooze", response_model=StockAlert)
async def snooze_alert(
    alert_id: str,
    request: SnoozeAlertRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.snooze_alert(alert_id, request.until, request.actor_ref)


@app.post(f"{API_PREFIX}/alerts/{{alert_id}}/cancel", response_model=StockAlert)
async def cancel_alert(
    alert_id: str,
    request: AlertActionRequest,
    ledger: StockLedger = Depends(get_ledger),
):
    return await ledger.cancel_alert(alert_id, request.actor_ref, request.notes)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("microservices.inventory_service.main:app", host="0.0.0.0", port=settings.service_port, log_level="info")
