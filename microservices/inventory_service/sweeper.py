"""
Reservation Expiry Sweeper

Periodic asyncio task that expires reservations past their TTL. Several
workers may run it at once; the ledger's conditional claims keep it
idempotent.
"""

import asyncio
import logging
from typing import Optional

from .protocols import InventoryError
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class ReservationSweeper:
    """Runs StockLedger.sweep_expired every interval_seconds"""

    def __init__(self, ledger: StockLedger, interval_seconds: float = 60.0, batch_size: int = 500):
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        try:
            return await self.ledger.sweep_expired(batch_size=self.batch_size)
        except InventoryError as e:
            logger.error(f"Expiry sweep failed: {e}")
            return 0

    async def _loop(self) -> None:
        while True:
            try:
                expired = await self.run_once()
            except Exception:
                # An unexpected failure must not end the background task
                logger.exception("Unexpected error in expiry sweep, retrying next interval")
                expired = 0
            # A full batch means there may be more waiting
            if expired < self.batch_size:
                await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="reservation-sweeper")
        logger.info(f"Reservation sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reservation sweeper stopped")
