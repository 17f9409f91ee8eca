"""
Reservation Manager

Time-boxed holds on stock. A reservation moves units from available to
reserved through the Concurrency Guard and ends in exactly one terminal
state: committed, released or expired.

Terminal transitions claim the reservation first with a conditional status
update and only the winner touches stock, so commit, release and the expiry
sweep can race on one reservation without double-counting.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .concurrency import ConcurrencyGuard
from .events.publishers import (
    publish_stock_committed,
    publish_stock_released,
    publish_stock_reserved,
)
from .models import (
    MovementType,
    ReservationFilter,
    ReservationStatus,
    ReservationTransition,
    ReservationValidation,
    StockLevel,
    StockReservation,
    utc_now,
)
from .protocols import (
    InsufficientStockError,
    InvalidAdjustmentError,
    InvalidQuantityError,
    InventoryError,
    ReservationNotFoundError,
    ReservationTerminalError,
    StockRepositoryProtocol,
)

logger = logging.getLogger(__name__)

DEFAULT_RESERVATION_TTL = timedelta(minutes=15)
EXPIRED_REASON = "expired"

StockListener = Callable[[StockLevel], Awaitable[None]]


class ReservationManager:
    """Creates, extends, commits, releases and expires reservations"""

    def __init__(
        self,
        repository: StockRepositoryProtocol,
        guard: ConcurrencyGuard,
        default_ttl: timedelta = DEFAULT_RESERVATION_TTL,
        sweep_batch_size: int = 500,
        event_bus=None,
        on_stock_changed: Optional[StockListener] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.guard = guard
        self.default_ttl = default_ttl
        self.sweep_batch_size = sweep_batch_size
        self.event_bus = event_bus
        self.on_stock_changed = on_stock_changed
        self.clock = clock

    async def _stock_changed(self, level: StockLevel) -> None:
        if self.on_stock_changed is not None:
            await self.on_stock_changed(level)

    async def get(self, reservation_id: str) -> StockReservation:
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(
                f"Reservation {reservation_id} not found", reservation_id=reservation_id
            )
        return reservation

    async def list_reservations(self, filters: ReservationFilter) -> List[StockReservation]:
        return await self.repository.list_reservations(filters)

    # ==================== Reserve ====================

    async def reserve(
        self,
        item_id: str,
        location_id: str,
        quantity: int,
        holder_ref: str,
        ttl: Optional[timedelta] = None,
    ) -> StockReservation:
        """Hold quantity units for holder_ref until now + ttl"""
        if quantity <= 0:
            raise InvalidQuantityError(
                f"Reservation quantity must be positive, got {quantity}", quantity=quantity
            )
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= timedelta(0):
            raise InvalidQuantityError(f"Reservation TTL must be positive, got {ttl}")

        reservation_id = f"res_{uuid.uuid4().hex[:16]}"

        def compute(level: StockLevel) -> StockLevel:
            if level.available < quantity:
                raise InsufficientStockError(item_id, location_id, quantity, level.available)
            return level.model_copy(update={"reserved": level.reserved + quantity})

        mutation = await self.guard.mutate(
            item_id,
            location_id,
            compute,
            MovementType.RESERVE,
            reason=f"reserved for {holder_ref}",
            actor_ref=holder_ref,
            reference_id=reservation_id,
            idempotency_key=f"{reservation_id}:{MovementType.RESERVE.value}",
        )

        now = self.clock()
        reservation = StockReservation(
            reservation_id=reservation_id,
            item_id=item_id,
            location_id=location_id,
            quantity=quantity,
            holder_ref=holder_ref,
            status=ReservationStatus.ACTIVE,
            created_at=now,
            expires_at=now + ttl,
            updated_at=now,
        )
        try:
            stored = await self.repository.create_reservation(reservation)
        except InventoryError as e:
            logger.error(f"Failed to store reservation {reservation_id}, returning {quantity} units: {e}")
            await self._compensate_hold(reservation)
            raise

        logger.info(
            f"Reserved {quantity} x {item_id}@{location_id} for {holder_ref} "
            f"as {reservation_id} until {stored.expires_at.isoformat()}"
        )
        await self._stock_changed(mutation.after)
        await publish_stock_reserved(self.event_bus, stored, mutation.after)
        return stored

    async def _compensate_hold(self, reservation: StockReservation) -> None:
        def compute(level: StockLevel) -> StockLevel:
            return level.model_copy(update={"reserved": level.reserved - reservation.quantity})

        try:
            await self.guard.mutate(
                reservation.item_id,
                reservation.location_id,
                compute,
                MovementType.RELEASE,
                reason="reservation could not be stored",
                reference_id=reservation.reservation_id,
                idempotency_key=f"{reservation.reservation_id}:{MovementType.RELEASE.value}",
            )
        except InventoryError as e:
            logger.error(
                f"Compensation failed for {reservation.reservation_id}: "
                f"{reservation.quantity} units remain reserved on "
                f"{reservation.item_id}@{reservation.location_id}: {e}"
            )

    # ==================== Extend ====================

    async def extend(self, reservation_id: str, additional_ttl: timedelta) -> StockReservation:
        """Push expires_at forward; stock is untouched"""
        if additional_ttl <= timedelta(0):
            raise InvalidQuantityError(f"Extension must be positive, got {additional_ttl}")

        reservation = await self.get(reservation_id)
        if reservation.is_terminal:
            raise ReservationTerminalError(
                f"Reservation {reservation_id} is {reservation.status.value}",
                reservation_id=reservation_id,
                status=reservation.status.value,
            )

        updated = await self.repository.update_reservation_expiry(
            reservation_id, reservation.expires_at + additional_ttl
        )
        if updated is None:
            current = await self.get(reservation_id)
            raise ReservationTerminalError(
                f"Reservation {reservation_id} is {current.status.value}",
                reservation_id=reservation_id,
                status=current.status.value,
            )

        logger.info(f"Extended reservation {reservation_id} until {updated.expires_at.isoformat()}")
        return updated

    # ==================== Terminal Transitions ====================

    async def _claim_then_mutate(
        self,
        reservation: StockReservation,
        target: ReservationStatus,
        updates: Dict[str, Any],
        movement_type: MovementType,
        release_on_hand: bool,
        reason: str,
        actor_ref: str,
    ) -> ReservationTransition:
        if reservation.status != ReservationStatus.ACTIVE:
            return ReservationTransition(
                reservation=reservation, applied=False, previous_status=reservation.status
            )

        claimed = await self.repository.transition_reservation(
            reservation.reservation_id, ReservationStatus.ACTIVE, {"status": target, **updates}
        )
        if claimed is None:
            current = await self.get(reservation.reservation_id)
            logger.debug(
                f"Reservation {reservation.reservation_id} already {current.status.value}, "
                f"skipping {target.value}"
            )
            return ReservationTransition(
                reservation=current, applied=False, previous_status=current.status
            )

        quantity = reservation.quantity

        def compute(level: StockLevel) -> StockLevel:
            if level.reserved < quantity:
                raise InvalidAdjustmentError(
                    f"Reserved count {level.reserved} on {level.item_id}@{level.location_id} "
                    f"is below reservation quantity {quantity}",
                    reservation_id=reservation.reservation_id,
                )
            update = {"reserved": level.reserved - quantity}
            if release_on_hand:
                update["on_hand"] = level.on_hand - quantity
            return level.model_copy(update=update)

        try:
            mutation = await self.guard.mutate(
                reservation.item_id,
                reservation.location_id,
                compute,
                movement_type,
                reason=reason,
                actor_ref=actor_ref,
                reference_id=reservation.reservation_id,
                idempotency_key=f"{reservation.reservation_id}:{movement_type.value}",
            )
        except InventoryError:
            await self._revert_claim(reservation, target)
            raise

        await self._stock_changed(mutation.after)
        return ReservationTransition(
            reservation=claimed,
            applied=True,
            previous_status=ReservationStatus.ACTIVE,
            stock_level=mutation.after,
        )

    async def _revert_claim(self, reservation: StockReservation, claimed_status: ReservationStatus) -> None:
        try:
            reverted = await self.repository.transition_reservation(
                reservation.reservation_id,
                claimed_status,
                {
                    "status": ReservationStatus.ACTIVE,
                    "committed_at": None,
                    "released_at": None,
                    "release_reason": None,
                    "reference_id": reservation.reference_id,
                    "updated_at": self.clock(),
                },
            )
        except InventoryError as e:
            logger.error(f"Revert of reservation {reservation.reservation_id} failed: {e}")
            return

        if reverted is None:
            logger.error(
                f"Could not revert reservation {reservation.reservation_id} "
                f"from {claimed_status.value} to active"
            )
        else:
            logger.warning(
                f"Reverted reservation {reservation.reservation_id} to active "
                f"after failed {claimed_status.value} stock update"
            )

    async def commit(
        self,
        reservation_id: str,
        reference_id: Optional[str] = None,
        actor_ref: str = "system",
    ) -> ReservationTransition:
        """Convert the hold into a permanent sale"""
        reservation = await self.get(reservation_id)
        now = self.clock()
        transition = await self._claim_then_mutate(
            reservation,
            ReservationStatus.COMMITTED,
            {"committed_at": now, "updated_at": now, "reference_id": reference_id or reservation.reference_id},
            MovementType.COMMIT_SALE,
            release_on_hand=True,
            reason=f"sale committed for {reservation.holder_ref}",
            actor_ref=actor_ref,
        )
        if transition.applied:
            logger.info(f"Committed reservation {reservation_id} ({reservation.quantity} x {reservation.item_id})")
            await publish_stock_committed(self.event_bus, transition.reservation, transition.stock_level)
        return transition

    async def release(
        self,
        reservation_id: str,
        reason: str = "released",
        actor_ref: str = "system",
    ) -> ReservationTransition:
        """Return the held units to available"""
        reservation = await self.get(reservation_id)
        now = self.clock()
        transition = await self._claim_then_mutate(
            reservation,
            ReservationStatus.RELEASED,
            {"released_at": now, "updated_at": now, "release_reason": reason},
            MovementType.RELEASE,
            release_on_hand=False,
            reason=reason,
            actor_ref=actor_ref,
        )
        if transition.applied:
            logger.info(f"Released reservation {reservation_id}: {reason}")
            await publish_stock_released(self.event_bus, transition.reservation, transition.stock_level)
        return transition

    async def expire(self, reservation: StockReservation, now: datetime) -> ReservationTransition:
        transition = await self._claim_then_mutate(
            reservation,
            ReservationStatus.EXPIRED,
            {"released_at": now, "updated_at": now, "release_reason": EXPIRED_REASON},
            MovementType.EXPIRE,
            release_on_hand=False,
            reason=EXPIRED_REASON,
            actor_ref="system",
        )
        if transition.applied:
            await publish_stock_released(self.event_bus, transition.reservation, transition.stock_level)
        return transition

    async def sweep_expired(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> int:
        """
        Expire every active reservation past its expires_at.

        Safe to run concurrently and repeatedly; returns the number of
        reservations this call expired.
        """
        now = now or self.clock()
        candidates = await self.repository.list_expired_reservations(now, batch_size or self.sweep_batch_size)

        expired = 0
        for reservation in candidates:
            try:
                transition = await self.expire(reservation, now)
            except InventoryError as e:
                logger.error(f"Failed to expire reservation {reservation.reservation_id}: {e}")
                continue
            if transition.applied:
                expired += 1

        if candidates:
            logger.info(f"Expiry sweep at {now.isoformat()}: {expired}/{len(candidates)} reservations expired")
        return expired

    # ==================== Validation ====================

    async def validate(self, reservation_id: str, now: Optional[datetime] = None) -> ReservationValidation:
        """Valid only when the reservation exists, is active and not past expires_at"""
        now = now or self.clock()
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            return ReservationValidation(reservation_id=reservation_id, valid=False, reason="not_found")
        if reservation.status != ReservationStatus.ACTIVE:
            return ReservationValidation(
                reservation_id=reservation_id,
                valid=False,
                reason=reservation.status.value,
                reservation=reservation,
            )
        if reservation.expires_at < now:
            return ReservationValidation(
                reservation_id=reservation_id, valid=False, reason="expired", reservation=reservation
            )
        return ReservationValidation(reservation_id=reservation_id, valid=True, reservation=reservation)
