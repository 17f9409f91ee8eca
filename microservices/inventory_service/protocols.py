"""
Inventory Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from datetime import datetime

# Import only models (no I/O dependencies)
from .models import (
    StockLevel,
    StockMovement,
    StockReservation,
    StockAlert,
    StockLevelFilter,
    ReservationStatus,
    AlertType,
    MovementFilter,
    ReservationFilter,
    AlertFilter,
)


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class InventoryError(Exception):
    """Base class for inventory ledger errors"""
    code = "inventory_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class StockLevelNotFoundError(InventoryError):
    """No stock level for the item/location"""
    code = "stock_level_not_found"


class DuplicateStockLevelError(InventoryError):
    """Item/location is already registered"""
    code = "duplicate_stock_level"


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds available stock"""
    code = "insufficient_stock"

    def __init__(self, item_id: str, location_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {item_id}@{location_id}: "
            f"requested {requested}, available {available}",
            item_id=item_id,
            location_id=location_id,
            requested=requested,
            available=available,
        )
        self.requested = requested
        self.available = available


class InvalidQuantityError(InventoryError):
    """Quantity must be positive (or a non-zero delta)"""
    code = "invalid_quantity"


class InvalidAdjustmentError(InventoryError):
    """Adjustment would leave on_hand negative or below reserved"""
    code = "invalid_adjustment"


class ReservationNotFoundError(InventoryError):
    """Reservation not found"""
    code = "reservation_not_found"


class ReservationTerminalError(InventoryError):
    """Reservation is committed, released or expired"""
    code = "reservation_terminal"


class VersionConflictError(InventoryError):
    """Compare-and-swap lost against a concurrent writer"""
    code = "version_conflict"


class ContentionError(InventoryError):
    """Compare-and-swap retries exhausted"""
    code = "contention"


class AlertNotFoundError(InventoryError):
    """Alert not found"""
    code = "alert_not_found"


class InvalidAlertTransitionError(InventoryError):
    """Alert cannot move from its current status to the requested one"""
    code = "invalid_alert_transition"


class RepositoryUnavailableError(InventoryError):
    """Storage is unreachable or failed"""
    code = "repository_unavailable"


# ============================================================================
# Repository Protocols
# ============================================================================

@runtime_checkable
class StockRepositoryProtocol(Protocol):
    """
    Interface for Stock Repository.

    Durable storage only; no business rules. Implementations must provide
    these methods. Used for dependency injection to enable testing.
    """

    async def initialize(self) -> None:
        """Prepare storage (schema, pools)"""
        ...

    async def close(self) -> None:
        """Release storage resources"""
        ...

    async def health_check(self) -> bool:
        """True when storage answers a trivial query"""
        ...

    # ==================== Stock Level Operations ====================

    async def get_stock_level(self, item_id: str, location_id: str) -> Optional[StockLevel]:
        """Get stock level with its current version"""
        ...

    async def create_stock_level(self, level: StockLevel) -> StockLevel:
        """Insert a new stock level; raises DuplicateStockLevelError"""
        ...

    async def compare_and_swap(self, level: StockLevel, expected_version: int) -> StockLevel:
        """Write level iff the stored version equals expected_version; raises VersionConflictError"""
        ...

    async def list_stock_levels(self, filters: StockLevelFilter) -> List[StockLevel]:
        """List stock levels ordered by location then item"""
        ...

    # ==================== Movement Operations ====================

    async def append_movement(self, movement: StockMovement) -> StockMovement:
        """Append a movement; an existing idempotency_key returns the stored row"""
        ...

    async def get_movement_by_key(self, idempotency_key: str) -> Optional[StockMovement]:
        """Get the movement recorded under an idempotency key"""
        ...

    async def list_movements(self, filters: MovementFilter) -> List[StockMovement]:
        """List movements, newest first"""
        ...

    # ==================== Reservation Operations ====================

    async def create_reservation(self, reservation: StockReservation) -> StockReservation:
        """Store a new reservation"""
        ...

    async def get_reservation(self, reservation_id: str) -> Optional[StockReservation]:
        """Get reservation by ID"""
        ...

    async def transition_reservation(
        self,
        reservation_id: str,
        from_status: ReservationStatus,
        updates: Dict[str, Any],
    ) -> Optional[StockReservation]:
        """Apply updates iff the stored status equals from_status; None otherwise"""
        ...

    async def update_reservation_expiry(
        self, reservation_id: str, expires_at: datetime
    ) -> Optional[StockReservation]:
        """Move expires_at while the reservation is active; None otherwise"""
        ...

    async def list_reservations(self, filters: ReservationFilter) -> List[StockReservation]:
        """List reservations, newest first"""
        ...

    async def list_expired_reservations(self, now: datetime, limit: int) -> List[StockReservation]:
        """Active reservations with expires_at < now, oldest first"""
        ...

    # ==================== Alert Operations ====================

    async def get_alert(self, alert_id: str) -> Optional[StockAlert]:
        """Get alert by ID"""
        ...

    async def get_alert_by_key(
        self, item_id: str, location_id: str, alert_type: AlertType
    ) -> Optional[StockAlert]:
        """Get the alert record for (item, location, type)"""
        ...

    async def upsert_alert(self, alert: StockAlert) -> StockAlert:
        """Insert or replace the alert for its (item, location, type)"""
        ...

    async def list_alerts(self, filters: AlertFilter) -> List[StockAlert]:
        """List alerts, newest first"""
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event"""
        ...

    async def subscribe_to_events(self, pattern: str, handler: Any, durable: Optional[str] = None) -> Any:
        """Subscribe a handler to a subject pattern"""
        ...

    async def close(self) -> None:
        """Drain subscriptions and disconnect"""
        ...
