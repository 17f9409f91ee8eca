"""
Inventory Service Events Module

Exports all event-related functionality for inventory service
"""

from .models import (
    InventoryEventType,
    InventorySubscribedEventType,
    InventoryStreamConfig,
    ReservationEventData,
    StockReservedEvent,
    StockCommittedEvent,
    StockReleasedEvent,
    StockAdjustedEvent,
    StockFailedEvent,
    AlertEventData,
)

from .publishers import (
    publish_stock_reserved,
    publish_stock_committed,
    publish_stock_released,
    publish_stock_adjusted,
    publish_stock_failed,
    publish_alert_event,
)

from .handlers import get_event_handlers

__all__ = [
    # Event Types
    "InventoryEventType",
    "InventorySubscribedEventType",
    "InventoryStreamConfig",
    # Event Models
    "ReservationEventData",
    "StockReservedEvent",
    "StockCommittedEvent",
    "StockReleasedEvent",
    "StockAdjustedEvent",
    "StockFailedEvent",
    "AlertEventData",
    # Publishers
    "publish_stock_reserved",
    "publish_stock_committed",
    "publish_stock_released",
    "publish_stock_adjusted",
    "publish_stock_failed",
    "publish_alert_event",
    # Handlers
    "get_event_handlers",
]
