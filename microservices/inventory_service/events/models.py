"""
Inventory Service Event Models

Pydantic models for events published by inventory service
"""

from pydantic import BaseModel, Field
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class InventoryEventType(str, Enum):
    """
    Events published by inventory_service.

    Stream: inventory-stream
    Subjects: inventory.>
    """
    STOCK_RESERVED = "inventory.reserved"
    STOCK_COMMITTED = "inventory.committed"
    STOCK_RELEASED = "inventory.released"
    STOCK_EXPIRED = "inventory.expired"
    STOCK_ADJUSTED = "inventory.adjusted"
    STOCK_FAILED = "inventory.failed"
    ALERT_TRIGGERED = "inventory.alert.triggered"
    ALERT_REOPENED = "inventory.alert.reopened"
    ALERT_ACKNOWLEDGED = "inventory.alert.acknowledged"
    ALERT_SNOOZED = "inventory.alert.snoozed"
    ALERT_RESOLVED = "inventory.alert.resolved"
    ALERT_CANCELLED = "inventory.alert.cancelled"


class InventorySubscribedEventType(str, Enum):
    """Events that inventory_service subscribes to from other services."""
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"
    ORDER_CANCELED = "order.canceled"


class InventoryStreamConfig:
    """Stream configuration for inventory_service"""
    STREAM_NAME = "inventory-stream"
    SUBJECTS = ["inventory.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "inventory"


# =============================================================================
# Event Data Models
# =============================================================================

class ReservationEventData(BaseModel):
    """Reservation snapshot carried by reservation events"""
    reservation_id: str
    item_id: str
    location_id: str
    quantity: int
    holder_ref: str
    status: str
    expires_at: datetime
    reference_id: Optional[str] = None


class StockReservedEvent(BaseModel):
    """Event published when stock is reserved for a holder"""
    reservation: ReservationEventData
    available_after: int
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_now)


class StockCommittedEvent(BaseModel):
    """Event published when a reservation is committed as a sale"""
    reservation: ReservationEventData
    on_hand_after: int
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_now)


class StockReleasedEvent(BaseModel):
    """Event published when a reservation is released or expires"""
    reservation: ReservationEventData
    reason: Optional[str] = None
    available_after: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_now)


class StockAdjustedEvent(BaseModel):
    """Event published after a restock or manual adjustment"""
    item_id: str
    location_id: str
    movement_type: str
    quantity_delta: int
    on_hand: int
    reserved: int
    available: int
    reason: str
    actor_ref: str
    stock_version: int
    timestamp: datetime = Field(default_factory=_now)


class StockFailedEvent(BaseModel):
    """Event published when a reservation request from another service fails"""
    holder_ref: str
    items: List[Dict[str, Any]]
    error_code: Optional[str] = None
    error_message: str
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_now)


class AlertEventData(BaseModel):
    """Event published on alert state changes"""
    alert_id: str
    item_id: str
    location_id: str
    alert_type: str
    priority: str
    status: str
    threshold_value: int
    current_value: int
    channels: List[str] = Field(default_factory=list)
    actor_ref: Optional[str] = None
    notes: Optional[str] = None
    snoozed_until: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=_now)
