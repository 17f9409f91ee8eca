"""
Inventory Service Data Models

Stock levels per (item, location), time-boxed reservations, the append-only
movement trail and threshold alerts.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat a datetime without tzinfo as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Enums
# =============================================================================

class ReservationStatus(str, Enum):
    """Reservation status"""
    ACTIVE = "active"
    COMMITTED = "committed"
    RELEASED = "released"
    EXPIRED = "expired"


TERMINAL_RESERVATION_STATUSES = (
    ReservationStatus.COMMITTED,
    ReservationStatus.RELEASED,
    ReservationStatus.EXPIRED,
)


class MovementType(str, Enum):
    """Kind of stock change recorded in the audit trail"""
    RESERVE = "reserve"
    RELEASE = "release"
    COMMIT_SALE = "commit_sale"
    EXPIRE = "expire"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    RESTOCK = "restock"


class AlertType(str, Enum):
    """Alert type"""
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    REORDER_POINT = "reorder_point"
    OVERSTOCK = "overstock"


class AlertPriority(str, Enum):
    """Alert priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertStatus(str, Enum):
    """Alert status"""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    SNOOZED = "snoozed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


OPEN_ALERT_STATUSES = (
    AlertStatus.ACTIVE,
    AlertStatus.ACKNOWLEDGED,
    AlertStatus.SNOOZED,
)


# =============================================================================
# Core Models
# =============================================================================

class StockLevel(BaseModel):
    """Stock record for one item at one location"""
    item_id: str
    location_id: str
    on_hand: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    reorder_point: int = Field(default=0, ge=0)
    maximum_stock: Optional[int] = Field(default=None, ge=0)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_reserved_within_on_hand(self) -> "StockLevel":
        if self.reserved > self.on_hand:
            raise ValueError(
                f"reserved ({self.reserved}) exceeds on_hand ({self.on_hand}) "
                f"for {self.item_id}@{self.location_id}"
            )
        return self

    @computed_field
    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


class StockReservation(BaseModel):
    """Time-boxed hold on stock for a checkout"""
    reservation_id: str
    item_id: str
    location_id: str
    quantity: int = Field(..., gt=0)
    holder_ref: str
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    updated_at: datetime = Field(default_factory=utc_now)
    committed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None
    reference_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RESERVATION_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return self.status == ReservationStatus.ACTIVE and self.expires_at < now


class StockMovement(BaseModel):
    """Append-only audit record of a stock change"""
    movement_id: str
    item_id: str
    location_id: str
    movement_type: MovementType
    quantity_delta: int
    quantity_before: int
    quantity_after: int
    reserved_before: int
    reserved_after: int
    reason: str
    actor_ref: str = "system"
    reference_id: Optional[str] = None
    stock_version: int
    idempotency_key: str
    occurred_at: datetime = Field(default_factory=utc_now)


class StockAlert(BaseModel):
    """Threshold alert for one (item, location, alert type)"""
    alert_id: str
    item_id: str
    location_id: str
    alert_type: AlertType
    threshold_value: int
    current_value: int
    priority: AlertPriority
    status: AlertStatus = AlertStatus.ACTIVE
    condition_active: bool = True
    snoozed_until: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    triggered_at: datetime = Field(default_factory=utc_now)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES


# =============================================================================
# Operation Results
# =============================================================================

class StockMutation(BaseModel):
    """Outcome of one guarded compare-and-swap"""
    before: StockLevel
    after: StockLevel
    movement: Optional[StockMovement] = None


class ReservationTransition(BaseModel):
    """Outcome of commit/release/expire; applied is False for terminal reservations"""
    reservation: StockReservation
    applied: bool
    previous_status: ReservationStatus
    stock_level: Optional[StockLevel] = None


class ReservationValidation(BaseModel):
    """Whether a reservation can still be committed"""
    reservation_id: str
    valid: bool
    reason: Optional[str] = None
    reservation: Optional[StockReservation] = None


class ReservationLineResult(BaseModel):
    """Per-line outcome of a bulk reservation"""
    item_id: str
    location_id: str
    quantity: int
    success: bool
    reservation: Optional[StockReservation] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class BulkReservationResult(BaseModel):
    """Outcome of reserve_many"""
    holder_ref: str
    success: bool
    reservations: List[StockReservation] = Field(default_factory=list)
    lines: List[ReservationLineResult] = Field(default_factory=list)


class BatchAdjustmentResult(BaseModel):
    """Per-entry outcome of a batch stock update"""
    item_id: str
    location_id: str
    success: bool
    stock_level: Optional[StockLevel] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class ReconciliationReport(BaseModel):
    """Comparison between the movement trail and the stored stock level"""
    item_id: str
    location_id: str
    stored_on_hand: int
    replayed_on_hand: int
    stored_version: int
    last_movement_version: Optional[int] = None
    movement_count: int
    consistent: bool
    broken_at_versions: List[int] = Field(default_factory=list)


class AlertStats(BaseModel):
    """Alert counts by type and status"""
    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)


# =============================================================================
# Configuration / Filters
# =============================================================================

class AlertConfig(BaseModel):
    """Typed alert configuration"""
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    default_reorder_point: int = Field(default=10, ge=0)
    default_maximum_stock: Optional[int] = Field(default=None, ge=0)
    routing: Dict[str, List[str]] = Field(default_factory=dict)

    def channels_for(self, alert_type: AlertType) -> List[str]:
        return self.routing.get(alert_type.value, [])


class MovementFilter(BaseModel):
    item_id: Optional[str] = None
    location_id: Optional[str] = None
    movement_type: Optional[MovementType] = None
    reference_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class ReservationFilter(BaseModel):
    item_id: Optional[str] = None
    location_id: Optional[str] = None
    holder_ref: Optional[str] = None
    status: Optional[ReservationStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class AlertFilter(BaseModel):
    item_id: Optional[str] = None
    location_id: Optional[str] = None
    alert_type: Optional[AlertType] = None
    status: Optional[AlertStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class StockLevelFilter(BaseModel):
    item_id: Optional[str] = None
    location_id: Optional[str] = None
    low_stock_only: bool = False
    # available at or below this counts as low; None uses each level's reorder_point
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# API Request / Response Models
# =============================================================================

class RegisterItemRequest(BaseModel):
    item_id: str
    location_id: str
    initial_quantity: int = Field(default=0, ge=0)
    reorder_point: Optional[int] = Field(default=None, ge=0)
    maximum_stock: Optional[int] = Field(default=None, ge=0)
    reason: str = "initial stock"
    actor_ref: str = "system"


class ReserveRequest(BaseModel):
    item_id: str
    location_id: str
    quantity: int
    holder_ref: str
    ttl_minutes: Optional[int] = Field(default=None, gt=0)


class ReserveLine(BaseModel):
    item_id: str
    location_id: str
    quantity: int


class BulkReserveRequest(BaseModel):
    holder_ref: str
    lines: List[ReserveLine] = Field(..., min_length=1)
    ttl_minutes: Optional[int] = Field(default=None, gt=0)
    all_or_nothing: bool = True


class ExtendRequest(BaseModel):
    additional_minutes: int = Field(..., gt=0)


class ReleaseRequest(BaseModel):
    reason: str = "released"


class CommitRequest(BaseModel):
    reference_id: Optional[str] = None


class AdjustRequest(BaseModel):
    delta: int
    reason: str
    actor_ref: str
    movement_type: Optional[MovementType] = None
    idempotency_key: Optional[str] = None


class BatchAdjustEntry(BaseModel):
    item_id: str
    location_id: str
    delta: Optional[int] = None
    quantity: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_delta_or_quantity(self) -> "BatchAdjustEntry":
        if (self.delta is None) == (self.quantity is None):
            raise ValueError("exactly one of delta or quantity must be given")
        return self


class BatchAdjustRequest(BaseModel):
    entries: List[BatchAdjustEntry] = Field(..., min_length=1)
    reason: str
    actor_ref: str


class ThresholdUpdateRequest(BaseModel):
    reorder_point: Optional[int] = Field(default=None, ge=0)
    maximum_stock: Optional[int] = Field(default=None, ge=0)
    clear_maximum_stock: bool = False
    actor_ref: str = "system"


class AlertActionRequest(BaseModel):
    actor_ref: str = "system"
    notes: Optional[str] = None


class SnoozeAlertRequest(BaseModel):
    until: datetime
    actor_ref: str = "system"

    @field_validator("until")
    @classmethod
    def normalize_until(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SweepResponse(BaseModel):
    expired: int
    swept_at: datetime


class AlertListResponse(BaseModel):
    alerts: List[StockAlert]
    stats: AlertStats


class StockSummary(BaseModel):
    """Totals over the stock levels of one location (or all)"""
    location_id: Optional[str] = None
    item_count: int = 0
    low_stock_count: int = 0
    out_of_stock_count: int = 0
    active_alert_count: int = 0
    total_on_hand: int = 0
    total_reserved: int = 0


class StockListResponse(BaseModel):
    levels: List[StockLevel]
    summary: StockSummary


class ErrorResponse(BaseModel):
    detail: str
    code: str
    context: Dict[str, Any] = Field(default_factory=dict)
