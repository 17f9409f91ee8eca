"""
Stock Repository Mock for Component Testing

In-memory implementation of StockRepositoryProtocol with real
compare-and-swap semantics. Reads yield to the event loop so concurrent
callers interleave, but no await sits between a version check and its
write, matching a single-statement conditional UPDATE.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from microservices.inventory_service.models import (
    AlertFilter,
    AlertType,
    MovementFilter,
    ReservationFilter,
    ReservationStatus,
    StockAlert,
    StockLevel,
    StockLevelFilter,
    StockMovement,
    StockReservation,
)
from microservices.inventory_service.protocols import (
    DuplicateStockLevelError,
    RepositoryUnavailableError,
    VersionConflictError,
)


class MockStockRepository:
    """Mock stock repository for component testing

    Implements StockRepositoryProtocol interface.
    Returns model objects (copies, never shared references).
    """

    def __init__(self):
        self._levels: Dict[Tuple[str, str], StockLevel] = {}
        self._movements: List[StockMovement] = []
        self._movement_keys: Dict[str, StockMovement] = {}
        self._reservations: Dict[str, StockReservation] = {}
        self._alerts: Dict[str, StockAlert] = {}
        self._alert_keys: Dict[Tuple[str, str, str], str] = {}
        self._errors: Dict[str, Exception] = {}
        self._forced_conflicts = 0
        self._call_log: List[Dict] = []
        self.initialized = False
        self.closed = False

    # =========================================================================
    # Test helpers
    # =========================================================================

    def set_stock_level(
        self,
        item_id: str,
        location_id: str,
        on_hand: int = 0,
        reserved: int = 0,
        reorder_point: int = 0,
        maximum_stock: Optional[int] = None,
        version: int = 1,
    ) -> StockLevel:
        """Seed a stock level directly (no movement)"""
        level = StockLevel(
            item_id=item_id,
            location_id=location_id,
            on_hand=on_hand,
            reserved=reserved,
            reorder_point=reorder_point,
            maximum_stock=maximum_stock,
            version=version,
        )
        self._levels[(item_id, location_id)] = level
        return level.model_copy()

    def set_reservation(self, reservation: StockReservation) -> None:
        self._reservations[reservation.reservation_id] = reservation.model_copy()

    def peek_level(self, item_id: str, location_id: str) -> Optional[StockLevel]:
        level = self._levels.get((item_id, location_id))
        return level.model_copy() if level else None

    def movements_for(self, item_id: str, location_id: str) -> List[StockMovement]:
        return [m for m in self._movements if m.item_id == item_id and m.location_id == location_id]

    @property
    def movements(self) -> List[StockMovement]:
        return list(self._movements)

    @property
    def alerts(self) -> List[StockAlert]:
        return list(self._alerts.values())

    def set_error(self, method: str, error: Exception):
        """Raise error on every call to method until cleared"""
        self._errors[method] = error

    def clear_error(self, method: Optional[str] = None):
        if method is None:
            self._errors.clear()
        else:
            self._errors.pop(method, None)

    def force_conflicts(self, count: int):
        """Make the next count compare-and-swaps lose"""
        self._forced_conflicts = count

    def _log_call(self, method: str, **kwargs):
        """Log method calls for assertions"""
        self._call_log.append({"method": method, "kwargs": kwargs})
        if method in self._errors:
            raise self._errors[method]

    def assert_called(self, method: str):
        """Assert that a method was called"""
        called_methods = [c["method"] for c in self._call_log]
        assert method in called_methods, f"Expected {method} to be called, but got {called_methods}"

    def get_call_count(self, method: str) -> int:
        """Get number of times a method was called"""
        return sum(1 for c in self._call_log if c["method"] == method)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        self._log_call("initialize")
        self.initialized = True

    async def close(self) -> None:
        self._log_call("close")
        self.closed = True

    async def health_check(self) -> bool:
        self._log_call("health_check")
        return True

    # =========================================================================
    # Stock levels
    # =========================================================================

    async def get_stock_level(self, item_id: str, location_id: str) -> Optional[StockLevel]:
        self._log_call("get_stock_level", item_id=item_id, location_id=location_id)
        level = self._levels.get((item_id, location_id))
        snapshot = level.model_copy() if level else None
        await asyncio.sleep(0)
        return snapshot

    async def create_stock_level(self, level: StockLevel) -> StockLevel:
        self._log_call("create_stock_level", item_id=level.item_id, location_id=level.location_id)
        key = (level.item_id, level.location_id)
        if key in self._levels:
            raise DuplicateStockLevelError(
                f"Stock level for {level.item_id}@{level.location_id} already exists",
                item_id=level.item_id,
                location_id=level.location_id,
            )
        self._levels[key] = level.model_copy()
        return level.model_copy()

    async def compare_and_swap(self, level: StockLevel, expected_version: int) -> StockLevel:
        self._log_call(
            "compare_and_swap",
            item_id=level.item_id,
            location_id=level.location_id,
            expected_version=expected_version,
        )
        key = (level.item_id, level.location_id)
        current = self._levels.get(key)
        if self._forced_conflicts > 0:
            self._forced_conflicts -= 1
            raise VersionConflictError("forced conflict", expected_version=expected_version)
        if current is None or current.version != expected_version:
            raise VersionConflictError(
                f"Version {expected_version} of {level.item_id}@{level.location_id} is stale",
                expected_version=expected_version,
            )
        stored = level.model_copy(update={"version": expected_version + 1})
        self._levels[key] = stored
        return stored.model_copy()

    async def list_stock_levels(self, filters: StockLevelFilter) -> List[StockLevel]:
        self._log_call("list_stock_levels", filters=filters)
        rows = []
        for level in self._levels.values():
            if filters.item_id is not None and level.item_id != filters.item_id:
                continue
            if filters.location_id is not None and level.location_id != filters.location_id:
                continue
            if filters.low_stock_only:
                threshold = (
                    filters.low_stock_threshold
                    if filters.low_stock_threshold is not None
                    else level.reorder_point
                )
                if level.available > threshold:
                    continue
            rows.append(level)
        rows.sort(key=lambda level: (level.location_id, level.item_id))
        return [level.model_copy() for level in rows[filters.offset:filters.offset + filters.limit]]

    # =========================================================================
    # Movements
    # =========================================================================

    async def append_movement(self, movement: StockMovement) -> StockMovement:
        self._log_call("append_movement", idempotency_key=movement.idempotency_key)
        existing = self._movement_keys.get(movement.idempotency_key)
        if existing is not None:
            return existing.model_copy()
        stored = movement.model_copy()
        self._movements.append(stored)
        self._movement_keys[stored.idempotency_key] = stored
        return stored.model_copy()

    async def get_movement_by_key(self, idempotency_key: str) -> Optional[StockMovement]:
        self._log_call("get_movement_by_key", idempotency_key=idempotency_key)
        movement = self._movement_keys.get(idempotency_key)
        return movement.model_copy() if movement else None

    async def list_movements(self, filters: MovementFilter) -> List[StockMovement]:
        self._log_call("list_movements", filters=filters)
        rows = [
            m for m in self._movements
            if self._matches(m.item_id, m.location_id, m.occurred_at, filters)
            and (filters.movement_type is None or m.movement_type == filters.movement_type)
            and (filters.reference_id is None or m.reference_id == filters.reference_id)
        ]
        rows.sort(key=lambda m: (m.occurred_at, m.stock_version), reverse=True)
        return [m.model_copy() for m in rows[filters.offset:filters.offset + filters.limit]]

    # =========================================================================
    # Reservations
    # =========================================================================

    async def create_reservation(self, reservation: StockReservation) -> StockReservation:
        self._log_call("create_reservation", reservation_id=reservation.reservation_id)
        self._reservations[reservation.reservation_id] = reservation.model_copy()
        return reservation.model_copy()

    async def get_reservation(self, reservation_id: str) -> Optional[StockReservation]:
        self._log_call("get_reservation", reservation_id=reservation_id)
        reservation = self._reservations.get(reservation_id)
        snapshot = reservation.model_copy() if reservation else None
        await asyncio.sleep(0)
        return snapshot

    async def transition_reservation(
        self,
        reservation_id: str,
        from_status: ReservationStatus,
        updates: Dict[str, Any],
    ) -> Optional[StockReservation]:
        self._log_call(
            "transition_reservation",
            reservation_id=reservation_id,
            from_status=from_status,
            to_status=updates.get("status"),
        )
        current = self._reservations.get(reservation_id)
        if current is None or current.status != from_status:
            return None
        updated = current.model_copy(update=updates)
        self._reservations[reservation_id] = updated
        return updated.model_copy()

    async def update_reservation_expiry(
        self, reservation_id: str, expires_at: datetime
    ) -> Optional[StockReservation]:
        self._log_call("update_reservation_expiry", reservation_id=reservation_id)
        current = self._reservations.get(reservation_id)
        if current is None or current.status != ReservationStatus.ACTIVE:
            return None
        updated = current.model_copy(update={"expires_at": expires_at})
        self._reservations[reservation_id] = updated
        return updated.model_copy()

    async def list_reservations(self, filters: ReservationFilter) -> List[StockReservation]:
        self._log_call("list_reservations", filters=filters)
        rows = [
            r for r in self._reservations.values()
            if self._matches(r.item_id, r.location_id, r.created_at, filters)
            and (filters.holder_ref is None or r.holder_ref == filters.holder_ref)
            and (filters.status is None or r.status == filters.status)
        ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy() for r in rows[filters.offset:filters.offset + filters.limit]]

    async def list_expired_reservations(self, now: datetime, limit: int) -> List[StockReservation]:
        self._log_call("list_expired_reservations", now=now, limit=limit)
        rows = [
            r for r in self._reservations.values()
            if r.status == ReservationStatus.ACTIVE and r.expires_at < now
        ]
        rows.sort(key=lambda r: r.expires_at)
        snapshot = [r.model_copy() for r in rows[:limit]]
        await asyncio.sleep(0)
        return snapshot

    # =========================================================================
    # Alerts
    # =========================================================================

    async def get_alert(self, alert_id: str) -> Optional[StockAlert]:
        self._log_call("get_alert", alert_id=alert_id)
        alert = self._alerts.get(alert_id)
        return alert.model_copy() if alert else None

    async def get_alert_by_key(
        self, item_id: str, location_id: str, alert_type: AlertType
    ) -> Optional[StockAlert]:
        self._log_call("get_alert_by_key", item_id=item_id, location_id=location_id, alert_type=alert_type)
        alert_id = self._alert_keys.get((item_id, location_id, alert_type.value))
        return self._alerts[alert_id].model_copy() if alert_id else None

    async def upsert_alert(self, alert: StockAlert) -> StockAlert:
        self._log_call("upsert_alert", alert_id=alert.alert_id, status=alert.status)
        key = (alert.item_id, alert.location_id, alert.alert_type.value)
        existing_id = self._alert_keys.get(key)
        if existing_id is not None and existing_id != alert.alert_id:
            alert = alert.model_copy(update={
                "alert_id": existing_id,
                "created_at": self._alerts[existing_id].created_at,
            })
        self._alert_keys[key] = alert.alert_id
        self._alerts[alert.alert_id] = alert.model_copy()
        return alert.model_copy()

    async def list_alerts(self, filters: AlertFilter) -> List[StockAlert]:
        self._log_call("list_alerts", filters=filters)
        rows = [
            a for a in self._alerts.values()
            if self._matches(a.item_id, a.location_id, a.triggered_at, filters)
            and (filters.alert_type is None or a.alert_type == filters.alert_type)
            and (filters.status is None or a.status == filters.status)
        ]
        rows.sort(key=lambda a: a.triggered_at, reverse=True)
        return [a.model_copy() for a in rows[filters.offset:filters.offset + filters.limit]]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _matches(item_id: str, location_id: str, timestamp: datetime, filters) -> bool:
        if filters.item_id is not None and item_id != filters.item_id:
            return False
        if filters.location_id is not None and location_id != filters.location_id:
            return False
        if filters.start_time is not None and timestamp < filters.start_time:
            return False
        if filters.end_time is not None and timestamp > filters.end_time:
            return False
        return True


def unavailable(operation: str = "test") -> RepositoryUnavailableError:
    """Storage failure as the real repository raises it"""
    return RepositoryUnavailableError(f"Storage unavailable during {operation}", operation=operation)
