"""
Movement Recorder

Append-only audit trail of stock changes. Every movement is derived from an
actual compare-and-swap (before/after levels), carries the stock version the
swap produced, and is keyed for idempotent appends.
"""

import logging
import uuid
from typing import List, Optional

from .models import (
    MovementFilter,
    MovementType,
    ReconciliationReport,
    StockLevel,
    StockMovement,
)
from .protocols import InventoryError, StockLevelNotFoundError, StockRepositoryProtocol

logger = logging.getLogger(__name__)

_PAGE_SIZE = 1000


class MovementRecorder:
    """Builds, appends and replays stock movements"""

    def __init__(self, repository: StockRepositoryProtocol):
        self.repository = repository

    @staticmethod
    def build(
        before: StockLevel,
        after: StockLevel,
        movement_type: MovementType,
        reason: str,
        actor_ref: str = "system",
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> StockMovement:
        """Describe the change between two consecutive versions of a level"""
        movement_id = f"mov_{uuid.uuid4().hex[:16]}"
        return StockMovement(
            movement_id=movement_id,
            item_id=after.item_id,
            location_id=after.location_id,
            movement_type=movement_type,
            quantity_delta=after.on_hand - before.on_hand,
            quantity_before=before.on_hand,
            quantity_after=after.on_hand,
            reserved_before=before.reserved,
            reserved_after=after.reserved,
            reason=reason,
            actor_ref=actor_ref,
            reference_id=reference_id,
            stock_version=after.version,
            idempotency_key=idempotency_key or movement_id,
            occurred_at=after.updated_at,
        )

    async def record(self, movement: StockMovement) -> Optional[StockMovement]:
        """
        Append a movement after a successful swap.

        The stock change has already happened, so a failed append is logged
        for reconciliation and None is returned instead of raising.
        """
        try:
            return await self.repository.append_movement(movement)
        except InventoryError as e:
            logger.error(
                f"Movement append failed for {movement.item_id}@{movement.location_id} "
                f"version={movement.stock_version} type={movement.movement_type.value} "
                f"key={movement.idempotency_key}: {e}"
            )
            return None

    async def history(self, filters: MovementFilter) -> List[StockMovement]:
        return await self.repository.list_movements(filters)

    async def all_movements(self, item_id: str, location_id: str) -> List[StockMovement]:
        """Every movement for an item/location, ordered by stock version"""
        movements: List[StockMovement] = []
        offset = 0
        while True:
            page = await self.repository.list_movements(
                MovementFilter(item_id=item_id, location_id=location_id, limit=_PAGE_SIZE, offset=offset)
            )
            movements.extend(page)
            if len(page) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE
        return sorted(movements, key=lambda m: m.stock_version)

    @staticmethod
    def replay(movements: List[StockMovement], starting_on_hand: Optional[int] = None) -> int:
        """
        Reproduce on_hand from a movement sequence.

        Without a starting value the oldest movement's quantity_before is used
        as the snapshot.
        """
        ordered = sorted(movements, key=lambda m: m.stock_version)
        if starting_on_hand is None:
            starting_on_hand = ordered[0].quantity_before if ordered else 0
        on_hand = starting_on_hand
        for movement in ordered:
            on_hand += movement.quantity_delta
        return on_hand

    @staticmethod
    def chain_breaks(movements: List[StockMovement]) -> List[int]:
        """Versions whose quantity_before does not follow the previous quantity_after"""
        breaks = []
        ordered = sorted(movements, key=lambda m: m.stock_version)
        for previous, current in zip(ordered, ordered[1:]):
            if current.quantity_before != previous.quantity_after:
                breaks.append(current.stock_version)
        return breaks

    async def reconcile(self, item_id: str, location_id: str) -> ReconciliationReport:
        """Compare the replayed trail against the stored level"""
        level = await self.repository.get_stock_level(item_id, location_id)
        if level is None:
            raise StockLevelNotFoundError(
                f"No stock level for {item_id}@{location_id}",
                item_id=item_id,
                location_id=location_id,
            )

        movements = await self.all_movements(item_id, location_id)
        replayed = self.replay(movements)
        breaks = self.chain_breaks(movements)
        report = ReconciliationReport(
            item_id=item_id,
            location_id=location_id,
            stored_on_hand=level.on_hand,
            replayed_on_hand=replayed,
            stored_version=level.version,
            last_movement_version=movements[-1].stock_version if movements else None,
            movement_count=len(movements),
            consistent=replayed == level.on_hand and not breaks,
            broken_at_versions=breaks,
        )
        if not report.consistent:
            logger.warning(
                f"Reconciliation mismatch for {item_id}@{location_id}: "
                f"stored={level.on_hand} replayed={replayed} breaks={breaks}"
            )
        return report
