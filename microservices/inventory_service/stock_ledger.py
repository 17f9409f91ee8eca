"""
Stock Ledger

Public facade of the inventory ledger. Composes the repository, Concurrency
Guard, Movement Recorder, Reservation Manager and Alert Engine. Every stock
write goes through the Guard; alerts are evaluated after every mutation.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .alert_engine import AlertEngine
from .concurrency import ConcurrencyGuard
from .events.publishers import publish_stock_adjusted
from .models import (
    AlertFilter,
    AlertStats,
    AlertStatus,
    BatchAdjustEntry,
    BatchAdjustmentResult,
    BulkReservationResult,
    MovementFilter,
    MovementType,
    ReconciliationReport,
    ReservationFilter,
    ReservationLineResult,
    ReservationTransition,
    ReservationValidation,
    ReserveLine,
    StockAlert,
    StockLevel,
    StockLevelFilter,
    StockMovement,
    StockReservation,
    StockSummary,
    utc_now,
)
from .movement_recorder import MovementRecorder
from .protocols import (
    InvalidAdjustmentError,
    InvalidQuantityError,
    EventBusProtocol,
    InventoryError,
    StockLevelNotFoundError,
    StockRepositoryProtocol,
)
from .reservation_manager import ReservationManager

logger = logging.getLogger(__name__)

_ADJUSTMENT_TYPES = (MovementType.RESTOCK, MovementType.MANUAL_ADJUSTMENT)
_PAGE_SIZE = 1000


class StockLedger:
    """Inventory ledger facade"""

    def __init__(
        self,
        repository: StockRepositoryProtocol,
        guard: ConcurrencyGuard,
        recorder: MovementRecorder,
        reservations: ReservationManager,
        alerts: AlertEngine,
        event_bus: Optional[EventBusProtocol] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.guard = guard
        self.recorder = recorder
        self.reservations = reservations
        self.alerts = alerts
        self.event_bus = event_bus
        self.clock = clock
        self.reservations.on_stock_changed = self._evaluate_alerts

    async def _evaluate_alerts(self, level: StockLevel) -> None:
        try:
            await self.alerts.evaluate(level)
        except InventoryError as e:
            logger.error(f"Alert evaluation failed for {level.item_id}@{level.location_id} v{level.version}: {e}")

    def set_event_bus(self, event_bus: EventBusProtocol) -> None:
        """Attach the event bus once it is connected"""
        self.event_bus = event_bus
        self.reservations.event_bus = event_bus
        self.alerts.event_bus = event_bus

    async def initialize(self) -> None:
        await self.repository.initialize()

    async def close(self) -> None:
        await self.repository.close()

    async def health_check(self) -> bool:
        try:
            return await self.repository.health_check()
        except InventoryError as e:
            logger.warning(f"Repository health check failed: {e}")
            return False

    # ==================== Stock Levels ====================

    async def register_item(
        self,
        item_id: str,
        location_id: str,
        initial_quantity: int = 0,
        reorder_point: Optional[int] = None,
        maximum_stock: Optional[int] = None,
        reason: str = "initial stock",
        actor_ref: str = "system",
    ) -> StockLevel:
        """
        Create the stock level at on_hand = 0 and restock the initial quantity,
        so replaying the movement trail always starts from zero.
        """
        if initial_quantity < 0:
            raise InvalidQuantityError(
                f"Initial quantity must not be negative, got {initial_quantity}",
                quantity=initial_quantity,
            )

        now = self.clock()
        level = await self.repository.create_stock_level(
            StockLevel(
                item_id=item_id,
                location_id=location_id,
                on_hand=0,
                reserved=0,
                reorder_point=(
                    reorder_point if reorder_point is not None
                    else self.alerts.config.default_reorder_point
                ),
                maximum_stock=(
                    maximum_stock if maximum_stock is not None
                    else self.alerts.config.default_maximum_stock
                ),
                version=0,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Registered {item_id}@{location_id} (initial quantity {initial_quantity})")

        if initial_quantity > 0:
            return await self.adjust(
                item_id, location_id, initial_quantity, reason, actor_ref, MovementType.RESTOCK
            )

        await self._evaluate_alerts(level)
        return level

    async def query(self, item_id: str, location_id: str) -> StockLevel:
        level = await self.repository.get_stock_level(item_id, location_id)
        if level is None:
            raise StockLevelNotFoundError(
                f"No stock level for {item_id}@{location_id}",
                item_id=item_id,
                location_id=location_id,
            )
        return level

    async def list_stock_levels(self, filters: StockLevelFilter) -> List[StockLevel]:
        """Stock levels by location then item; low_stock_only uses the alert low threshold"""
        if filters.low_stock_only and filters.low_stock_threshold is None:
            filters = filters.model_copy(
                update={"low_stock_threshold": self.alerts.config.low_stock_threshold}
            )
        return await self.repository.list_stock_levels(filters)

    async def stock_summary(self, location_id: Optional[str] = None) -> StockSummary:
        """Item, low-stock, out-of-stock and active alert counts for a location (or all)"""
        low_threshold = self.alerts.config.low_stock_threshold
        summary = StockSummary(location_id=location_id)
        offset = 0
        while True:
            page = await self.repository.list_stock_levels(
                StockLevelFilter(location_id=location_id, limit=_PAGE_SIZE, offset=offset)
            )
            for level in page:
                threshold = low_threshold if low_threshold is not None else level.reorder_point
                summary.item_count += 1
                summary.total_on_hand += level.on_hand
                summary.total_reserved += level.reserved
                if level.available <= 0:
                    summary.out_of_stock_count += 1
                elif level.available <= threshold:
                    summary.low_stock_count += 1
            if len(page) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE

        active = await self.alerts.stats(AlertFilter(location_id=location_id, status=AlertStatus.ACTIVE))
        summary.active_alert_count = active.total
        return summary

    async def adjust(
        self,
        item_id: str,
        location_id: str,
        delta: int,
        reason: str,
        actor_ref: str,
        movement_type: Optional[MovementType] = None,
        idempotency_key: Optional[str] = None,
    ) -> StockLevel:
        """
        Change on_hand by delta (restock or manual correction).

        Never clamps: a delta that would take on_hand below reserved raises
        InvalidAdjustmentError.
        """
        if delta == 0:
            raise InvalidQuantityError("Adjustment delta must not be zero")

        if movement_type is None:
            movement_type = MovementType.RESTOCK if delta > 0 else MovementType.MANUAL_ADJUSTMENT
        if movement_type not in _ADJUSTMENT_TYPES:
            raise InvalidAdjustmentError(
                f"Movement type {movement_type.value} is not an adjustment",
                movement_type=movement_type.value,
            )
        if movement_type == MovementType.RESTOCK and delta < 0:
            raise InvalidAdjustmentError("Restock delta must be positive", delta=delta)

        if idempotency_key is not None:
            recorded = await self.repository.get_movement_by_key(idempotency_key)
            if recorded is not None:
                if (recorded.item_id, recorded.location_id) != (item_id, location_id):
                    raise InvalidAdjustmentError(
                        f"Idempotency key {idempotency_key} was used for "
                        f"{recorded.item_id}@{recorded.location_id}",
                        idempotency_key=idempotency_key,
                    )
                logger.info(
                    f"Adjustment {idempotency_key} on {item_id}@{location_id} already applied "
                    f"at version {recorded.stock_version}"
                )
                return await self.query(item_id, location_id)

        def compute(level: StockLevel) -> StockLevel:
            new_on_hand = level.on_hand + delta
            if new_on_hand < level.reserved:
                raise InvalidAdjustmentError(
                    f"Adjustment of {delta} on {item_id}@{location_id} would leave on_hand "
                    f"{new_on_hand} below reserved {level.reserved}",
                    item_id=item_id,
                    location_id=location_id,
                    delta=delta,
                    on_hand=level.on_hand,
                    reserved=level.reserved,
                )
            return level.model_copy(update={"on_hand": new_on_hand})

        mutation = await self.guard.mutate(
            item_id,
            location_id,
            compute,
            movement_type,
            reason=reason,
            actor_ref=actor_ref,
            idempotency_key=idempotency_key,
        )
        logger.info(
            f"Adjusted {item_id}@{location_id} by {delta} ({movement_type.value}) by {actor_ref}: {reason}"
        )

        await self._evaluate_alerts(mutation.after)
        if mutation.movement is not None:
            await publish_stock_adjusted(self.event_bus, mutation.movement, mutation.after)
        return mutation.after

    async def set_quantity(
        self,
        item_id: str,
        location_id: str,
        quantity: int,
        reason: str,
        actor_ref: str,
    ) -> StockLevel:
        """Set on_hand to an absolute value (stock count correction)"""
        if quantity < 0:
            raise InvalidQuantityError(f"Quantity must not be negative, got {quantity}", quantity=quantity)

        current = await self.query(item_id, location_id)
        if current.on_hand == quantity:
            return current

        def compute(level: StockLevel) -> StockLevel:
            if quantity < level.reserved:
                raise InvalidAdjustmentError(
                    f"Cannot set {item_id}@{location_id} to {quantity}: {level.reserved} units reserved",
                    item_id=item_id,
                    location_id=location_id,
                    quantity=quantity,
                    reserved=level.reserved,
                )
            return level.model_copy(update={"on_hand": quantity})

        mutation = await self.guard.mutate(
            item_id,
            location_id,
            compute,
            MovementType.MANUAL_ADJUSTMENT,
            reason=reason,
            actor_ref=actor_ref,
        )
        logger.info(f"Set {item_id}@{location_id} on_hand to {quantity} by {actor_ref}: {reason}")

        await self._evaluate_alerts(mutation.after)
        if mutation.movement is not None:
            await publish_stock_adjusted(self.event_bus, mutation.movement, mutation.after)
        return mutation.after

    async def adjust_batch(
        self,
        entries: List[BatchAdjustEntry],
        reason: str,
        actor_ref: str,
    ) -> List[BatchAdjustmentResult]:
        """Apply independent delta or absolute updates; one failure does not stop the rest"""
        results = []
        for entry in entries:
            try:
                if entry.quantity is not None:
                    level = await self.set_quantity(
                        entry.item_id, entry.location_id, entry.quantity, reason, actor_ref
                    )
                else:
                    level = await self.adjust(
                        entry.item_id, entry.location_id, entry.delta, reason, actor_ref
                    )
                results.append(BatchAdjustmentResult(
                    item_id=entry.item_id,
                    location_id=entry.location_id,
                    success=True,
                    stock_level=level,
                ))
            except InventoryError as e:
                logger.warning(f"Batch update failed for {entry.item_id}@{entry.location_id}: {e}")
                results.append(BatchAdjustmentResult(
                    item_id=entry.item_id,
                    location_id=entry.location_id,
                    success=False,
                    error_code=e.code,
                    error=e.message,
                ))
        return results

    async def update_thresholds(
        self,
        item_id: str,
        location_id: str,
        reorder_point: Optional[int] = None,
        maximum_stock: Optional[int] = None,
        clear_maximum_stock: bool = False,
        actor_ref: str = "system",
    ) -> StockLevel:
        """Change reorder_point / maximum_stock without touching quantities"""
        if reorder_point is not None and reorder_point < 0:
            raise InvalidQuantityError(f"reorder_point must not be negative, got {reorder_point}")
        if maximum_stock is not None and maximum_stock < 0:
            raise InvalidQuantityError(f"maximum_stock must not be negative, got {maximum_stock}")

        def compute(level: StockLevel) -> StockLevel:
            update = {}
            if reorder_point is not None:
                update["reorder_point"] = reorder_point
            if clear_maximum_stock:
                update["maximum_stock"] = None
            elif maximum_stock is not None:
                update["maximum_stock"] = maximum_stock
            return level.model_copy(update=update)

        mutation = await self.guard.mutate(
            item_id,
            location_id,
            compute,
            None,
            reason="threshold update",
            actor_ref=actor_ref,
        )
        logger.info(
            f"Thresholds for {item_id}@{location_id} set by {actor_ref}: "
            f"reorder_point={mutation.after.reorder_point} maximum_stock={mutation.after.maximum_stock}"
        )
        await self._evaluate_alerts(mutation.after)
        return mutation.after

    # ==================== Reservations ====================

    async def reserve(
        self,
        item_id: str,
        location_id: str,
        quantity: int,
        holder_ref: str,
        ttl: Optional[timedelta] = None,
    ) -> StockReservation:
        return await self.reservations.reserve(item_id, location_id, quantity, holder_ref, ttl)

    async def reserve_many(
        self,
        holder_ref: str,
        lines: List[ReserveLine],
        ttl: Optional[timedelta] = None,
        all_or_nothing: bool = True,
    ) -> BulkReservationResult:
        """
        Reserve several cart lines for one holder.

        All-or-nothing mode releases the holds already made when a line fails;
        otherwise every line is attempted and reported.
        """
        results: List[ReservationLineResult] = []
        made: List[StockReservation] = []

        for line in lines:
            try:
                reservation = await self.reservations.reserve(
                    line.item_id, line.location_id, line.quantity, holder_ref, ttl
                )
            except InventoryError as e:
                results.append(ReservationLineResult(
                    item_id=line.item_id,
                    location_id=line.location_id,
                    quantity=line.quantity,
                    success=False,
                    error_code=e.code,
                    error=e.message,
                ))
                if all_or_nothing:
                    await self._rollback_lines(made, holder_ref)
                    return BulkReservationResult(holder_ref=holder_ref, success=False, lines=results)
                continue

            made.append(reservation)
            results.append(ReservationLineResult(
                item_id=line.item_id,
                location_id=line.location_id,
                quantity=line.quantity,
                success=True,
                reservation=reservation,
            ))

        return BulkReservationResult(
            holder_ref=holder_ref,
            success=all(result.success for result in results),
            reservations=made,
            lines=results,
        )

    async def _rollback_lines(self, reservations: List[StockReservation], holder_ref: str) -> None:
        for reservation in reservations:
            try:
                await self.reservations.release(
                    reservation.reservation_id, reason="bulk reservation rolled back"
                )
            except InventoryError as e:
                logger.error(
                    f"Rollback of {reservation.reservation_id} for {holder_ref} failed, "
                    f"expiry will reclaim it: {e}"
                )

    async def extend(self, reservation_id: str, additional_ttl: timedelta) -> StockReservation:
        return await self.reservations.extend(reservation_id, additional_ttl)

    async def release(
        self, reservation_id: str, reason: str = "released", actor_ref: str = "system"
    ) -> ReservationTransition:
        return await self.reservations.release(reservation_id, reason, actor_ref)

    async def commit_sale(
        self, reservation_id: str, reference_id: Optional[str] = None, actor_ref: str = "system"
    ) -> ReservationTransition:
        return await self.reservations.commit(reservation_id, reference_id, actor_ref)

    async def validate_reservation(
        self, reservation_id: str, now: Optional[datetime] = None
    ) -> ReservationValidation:
        return await self.reservations.validate(reservation_id, now)

    async def sweep_expired(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> int:
        return await self.reservations.sweep_expired(now, batch_size)

    async def get_reservation(self, reservation_id: str) -> StockReservation:
        return await self.reservations.get(reservation_id)

    async def list_reservations(self, filters: ReservationFilter) -> List[StockReservation]:
        return await self.reservations.list_reservations(filters)

    # ==================== Movements ====================

    async def list_movements(self, filters: MovementFilter) -> List[StockMovement]:
        return await self.recorder.history(filters)

    async def reconcile(self, item_id: str, location_id: str) -> ReconciliationReport:
        return await self.recorder.reconcile(item_id, location_id)

    # ==================== Alerts ====================

    async def list_alerts(self, filters: AlertFilter) -> List[StockAlert]:
        return await self.alerts.list_alerts(filters)

    async def alert_stats(self, filters: Optional[AlertFilter] = None) -> AlertStats:
        return await self.alerts.stats(filters)

    async def get_alert(self, alert_id: str) -> StockAlert:
        return await self.alerts.get_alert(alert_id)

    async def acknowledge_alert(self, alert_id: str, actor_ref: str) -> StockAlert:
        return await self.alerts.acknowledge(alert_id, actor_ref)

    async def resolve_alert(self, alert_id: str, actor_ref: str, notes: Optional[str] = None) -> StockAlert:
        return await self.alerts.resolve(alert_id, actor_ref, notes)

    async def snooze_alert(self, alert_id: str, until: datetime, actor_ref: str) -> StockAlert:
        return await self.alerts.snooze(alert_id, until, actor_ref)

    async def cancel_alert(self, alert_id: str, actor_ref: str, notes: Optional[str] = None) -> StockAlert:
        return await self.alerts.cancel(alert_id, actor_ref, notes)
