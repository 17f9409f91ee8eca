"""
Concurrency Guard

The only write path for stock levels: read with version, compute the new
level, validate, compare-and-swap, and retry on version conflicts with
jittered exponential backoff. Each successful swap is paired with one
movement append.
"""

import logging
from typing import Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .models import MovementType, StockLevel, StockMutation, utc_now
from .movement_recorder import MovementRecorder
from .protocols import (
    ContentionError,
    InvalidAdjustmentError,
    StockLevelNotFoundError,
    StockRepositoryProtocol,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

ComputeFn = Callable[[StockLevel], StockLevel]


class ConcurrencyGuard:
    """Optimistic compare-and-swap with bounded retry"""

    def __init__(
        self,
        repository: StockRepositoryProtocol,
        recorder: MovementRecorder,
        max_retries: int = 5,
        backoff_base_seconds: float = 0.01,
        backoff_max_seconds: float = 0.25,
    ):
        self.repository = repository
        self.recorder = recorder
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    @staticmethod
    def validate(level: StockLevel) -> None:
        """Reject levels that break 0 <= reserved <= on_hand"""
        if level.on_hand < 0 or level.reserved < 0 or level.reserved > level.on_hand:
            raise InvalidAdjustmentError(
                f"Invalid stock level for {level.item_id}@{level.location_id}: "
                f"on_hand={level.on_hand} reserved={level.reserved}",
                item_id=level.item_id,
                location_id=level.location_id,
                on_hand=level.on_hand,
                reserved=level.reserved,
            )

    async def _swap_once(self, item_id: str, location_id: str, compute: ComputeFn):
        before = await self.repository.get_stock_level(item_id, location_id)
        if before is None:
            raise StockLevelNotFoundError(
                f"No stock level for {item_id}@{location_id}",
                item_id=item_id,
                location_id=location_id,
            )

        proposed = compute(before)
        self.validate(proposed)
        proposed = proposed.model_copy(
            update={
                "item_id": before.item_id,
                "location_id": before.location_id,
                "created_at": before.created_at,
                "version": before.version + 1,
                "updated_at": utc_now(),
            }
        )
        after = await self.repository.compare_and_swap(proposed, expected_version=before.version)
        return before, after

    async def mutate(
        self,
        item_id: str,
        location_id: str,
        compute: ComputeFn,
        movement_type: Optional[MovementType],
        reason: str,
        actor_ref: str = "system",
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> StockMutation:
        """
        Apply compute() to the current level atomically.

        Domain errors raised by compute() are not retried. A movement is
        recorded unless movement_type is None.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(VersionConflictError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random_exponential(
                multiplier=self.backoff_base_seconds, max=self.backoff_max_seconds
            ),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    before, after = await self._swap_once(item_id, location_id, compute)
        except RetryError as e:
            logger.warning(
                f"Contention on {item_id}@{location_id}: "
                f"{self.max_retries + 1} attempts lost the compare-and-swap"
            )
            raise ContentionError(
                f"Too much contention on {item_id}@{location_id}, retry later",
                item_id=item_id,
                location_id=location_id,
                attempts=self.max_retries + 1,
            ) from e

        movement = None
        if movement_type is not None:
            movement = await self.recorder.record(
                self.recorder.build(
                    before,
                    after,
                    movement_type,
                    reason,
                    actor_ref=actor_ref,
                    reference_id=reference_id,
                    idempotency_key=idempotency_key,
                )
            )

        logger.debug(
            f"Stock {item_id}@{location_id} v{after.version}: "
            f"on_hand {before.on_hand}->{after.on_hand}, reserved {before.reserved}->{after.reserved}"
        )
        return StockMutation(before=before, after=after, movement=movement)
