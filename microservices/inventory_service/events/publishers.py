"""
Inventory Service Event Publishers

Functions to publish events from inventory service.
Publishing never raises: failures are logged and reported as False.
"""

import logging
from typing import Optional, Dict, Any, List

from core.nats_client import Event, ServiceSource
from ..models import StockAlert, StockLevel, StockMovement, StockReservation
from .models import (
    InventoryEventType,
    ReservationEventData,
    StockReservedEvent,
    StockCommittedEvent,
    StockReleasedEvent,
    StockAdjustedEvent,
    StockFailedEvent,
    AlertEventData,
)

logger = logging.getLogger(__name__)


def _reservation_data(reservation: StockReservation) -> ReservationEventData:
    return ReservationEventData(
        reservation_id=reservation.reservation_id,
        item_id=reservation.item_id,
        location_id=reservation.location_id,
        quantity=reservation.quantity,
        holder_ref=reservation.holder_ref,
        status=reservation.status.value,
        expires_at=reservation.expires_at,
        reference_id=reservation.reference_id,
    )


async def _publish(event_bus, event_type: InventoryEventType, data: Dict[str, Any], subject: str) -> bool:
    if not event_bus:
        logger.warning(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        event = Event(
            event_type=event_type.value,
            source=ServiceSource.INVENTORY_SERVICE,
            data=data,
            subject=subject,
        )
        published = await event_bus.publish_event(event)
        if published is False:
            logger.error(f"Event bus rejected {event_type.value} event for {subject}")
            return False
        logger.info(f"Published {event_type.value} event for {subject}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} event: {e}")
        return False


async def publish_stock_reserved(
    event_bus,
    reservation: StockReservation,
    level: StockLevel,
    metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """Publish inventory.reserved event"""
    event_data = StockReservedEvent(
        reservation=_reservation_data(reservation),
        available_after=level.available,
        metadata=metadata or {}
    )
    return await _publish(
        event_bus,
        InventoryEventType.STOCK_RESERVED,
        event_data.model_dump(mode='json'),
        reservation.reservation_id,
    )


async def publish_stock_committed(
    event_bus,
    reservation: StockReservation,
    level: StockLevel,
    metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """Publish inventory.committed event"""
    event_data = StockCommittedEvent(
        reservation=_reservation_data(reservation),
        on_hand_after=level.on_hand,
        metadata=metadata or {}
    )
    return await _publish(
        event_bus,
        InventoryEventType.STOCK_COMMITTED,
        event_data.model_dump(mode='json'),
        reservation.reservation_id,
    )


async def publish_stock_released(
    event_bus,
    reservation: StockReservation,
    level: Optional[StockLevel] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """Publish inventory.released (or inventory.expired) event"""
    event_data = StockReleasedEvent(
        reservation=_reservation_data(reservation),
        reason=reservation.release_reason,
        available_after=level.available if level else None,
        metadata=metadata or {}
    )
    event_type = (
        InventoryEventType.STOCK_EXPIRED
        if reservation.status.value == "expired"
        else InventoryEventType.STOCK_RELEASED
    )
    return await _publish(
        event_bus,
        event_type,
        event_data.model_dump(mode='json'),
        reservation.reservation_id,
    )


async def publish_stock_adjusted(
    event_bus,
    movement: StockMovement,
    level: StockLevel
) -> bool:
    """Publish inventory.adjusted event"""
    event_data = StockAdjustedEvent(
        item_id=level.item_id,
        location_id=level.location_id,
        movement_type=movement.movement_type.value,
        quantity_delta=movement.quantity_delta,
        on_hand=level.on_hand,
        reserved=level.reserved,
        available=level.available,
        reason=movement.reason,
        actor_ref=movement.actor_ref,
        stock_version=level.version,
    )
    return await _publish(
        event_bus,
        InventoryEventType.STOCK_ADJUSTED,
        event_data.model_dump(mode='json'),
        f"{level.item_id}@{level.location_id}",
    )


async def publish_stock_failed(
    event_bus,
    holder_ref: str,
    items: List[Dict[str, Any]],
    error_message: str,
    error_code: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """Publish inventory.failed event"""
    event_data = StockFailedEvent(
        holder_ref=holder_ref,
        items=items,
        error_code=error_code,
        error_message=error_message,
        metadata=metadata or {}
    )
    return await _publish(
        event_bus,
        InventoryEventType.STOCK_FAILED,
        event_data.model_dump(mode='json'),
        holder_ref,
    )


async def publish_alert_event(
    event_bus,
    event_type: InventoryEventType,
    alert: StockAlert,
    channels: List[str],
    actor_ref: Optional[str] = None,
    notes: Optional[str] = None
) -> bool:
    """Publish an inventory.alert.* event with the alert's notification routing"""
    event_data = AlertEventData(
        alert_id=alert.alert_id,
        item_id=alert.item_id,
        location_id=alert.location_id,
        alert_type=alert.alert_type.value,
        priority=alert.priority.value,
        status=alert.status.value,
        threshold_value=alert.threshold_value,
        current_value=alert.current_value,
        channels=channels,
        actor_ref=actor_ref,
        notes=notes,
        snoozed_until=alert.snoozed_until,
    )
    return await _publish(
        event_bus,
        event_type,
        event_data.model_dump(mode='json'),
        alert.alert_id,
    )
