"""
Inventory Service Event Handlers

Handlers for events from other services. Payment confirmation commits the
holder's reservations; payment failure and order cancellation release them.
Reservations are matched by explicit reservation ids or by holder_ref.
"""

import logging
from typing import Any, Callable, Dict, List

from ..models import ReservationFilter, ReservationStatus
from ..protocols import InventoryError
from .publishers import publish_stock_failed

logger = logging.getLogger(__name__)


def _lookup(event_data: Dict[str, Any], key: str):
    value = event_data.get(key)
    if value is None:
        value = (event_data.get("metadata") or {}).get(key)
    return value


async def _match_reservations(event_data: Dict[str, Any], ledger) -> List[str]:
    reservation_ids = _lookup(event_data, "reservation_ids")
    if reservation_ids:
        return list(reservation_ids)

    reservation_id = _lookup(event_data, "reservation_id")
    if reservation_id:
        return [reservation_id]

    holder_ref = _lookup(event_data, "holder_ref") or _lookup(event_data, "order_id")
    if not holder_ref:
        return []

    reservations = await ledger.list_reservations(
        ReservationFilter(holder_ref=holder_ref, status=ReservationStatus.ACTIVE, limit=1000)
    )
    return [reservation.reservation_id for reservation in reservations]


async def handle_payment_completed(event_data: Dict[str, Any], ledger) -> None:
    """
    Handle payment.completed event

    Commit the reservations held for the paid order
    """
    reference_id = _lookup(event_data, "order_id") or event_data.get("payment_id") or event_data.get("payment_intent_id")
    reservation_ids = await _match_reservations(event_data, ledger)
    if not reservation_ids:
        logger.warning(f"payment.completed event for {reference_id} matched no reservations")
        return

    logger.info(f"Processing payment.completed for {reference_id}: {len(reservation_ids)} reservations")
    for reservation_id in reservation_ids:
        try:
            transition = await ledger.commit_sale(reservation_id, reference_id=reference_id, actor_ref="payment_service")
            if not transition.applied:
                logger.info(
                    f"Reservation {reservation_id} already {transition.reservation.status.value}, "
                    f"commit skipped"
                )
        except InventoryError as e:
            logger.error(f"Error committing reservation {reservation_id} for {reference_id}: {e}")
            await publish_stock_failed(
                event_bus=ledger.event_bus,
                holder_ref=str(reference_id or reservation_id),
                items=[{"reservation_id": reservation_id}],
                error_message=e.message,
                error_code=e.code,
                metadata={"source_event": "payment.completed"}
            )


async def _release_matched(event_data: Dict[str, Any], ledger, reason: str, source: str) -> None:
    reservation_ids = await _match_reservations(event_data, ledger)
    if not reservation_ids:
        logger.info(f"{source} event matched no active reservations (may already be released)")
        return

    logger.info(f"Processing {source}: releasing {len(reservation_ids)} reservations")
    for reservation_id in reservation_ids:
        try:
            await ledger.release(reservation_id, reason=reason, actor_ref=source.split(".")[0] + "_service")
        except InventoryError as e:
            logger.error(f"Error releasing reservation {reservation_id} on {source}: {e}")


async def handle_payment_failed(event_data: Dict[str, Any], ledger) -> None:
    """
    Handle payment.failed event

    Release the reservations held for the failed payment
    """
    reason = event_data.get("error_code") or "payment_failed"
    await _release_matched(event_data, ledger, reason, "payment.failed")


async def handle_order_canceled(event_data: Dict[str, Any], ledger) -> None:
    """
    Handle order.canceled event

    Release the inventory reservations
    """
    reason = event_data.get("cancellation_reason") or "order_canceled"
    await _release_matched(event_data, ledger, reason, "order.canceled")


def get_event_handlers(ledger) -> Dict[str, Callable]:
    """
    Return a mapping of event patterns to handler functions

    This will be used in main.py to register event subscriptions.

    Args:
        ledger: StockLedger instance

    Returns:
        Dict mapping event patterns to handler functions
    """
    return {
        "payment.completed": lambda event: handle_payment_completed(event.data, ledger),
        "payment.failed": lambda event: handle_payment_failed(event.data, ledger),
        "order.canceled": lambda event: handle_order_canceled(event.data, ledger),
    }
