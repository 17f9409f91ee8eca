"""
Alert Engine

Evaluates stock thresholds after every ledger mutation and maintains one
alert record per (item, location, alert type) through its lifecycle:

    active -> acknowledged -> resolved
    active / acknowledged -> snoozed -> active (once snoozed_until passes)
    any open status -> cancelled

A resolved or cancelled record is reopened only when its condition clears
and later recurs (a new episode). Snoozed alerts stay silent until reopened.
"""

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional, Tuple

from .events.models import InventoryEventType
from .events.publishers import publish_alert_event
from .models import (
    AlertConfig,
    AlertFilter,
    AlertPriority,
    AlertStats,
    AlertStatus,
    AlertType,
    StockAlert,
    StockLevel,
    ensure_utc,
    utc_now,
)
from .protocols import (
    AlertNotFoundError,
    InvalidAlertTransitionError,
    StockRepositoryProtocol,
)

logger = logging.getLogger(__name__)


class AlertCondition(NamedTuple):
    alert_type: AlertType
    active: bool
    threshold_value: int
    current_value: int
    priority: AlertPriority


def evaluate_thresholds(level: StockLevel, config: AlertConfig) -> List[AlertCondition]:
    """State of every alert condition for a stock level"""
    available = level.available
    low_threshold = (
        config.low_stock_threshold
        if config.low_stock_threshold is not None
        else level.reorder_point
    )
    distinct_low = (
        config.low_stock_threshold is not None
        and config.low_stock_threshold > level.reorder_point
    )

    out_of_stock = available <= 0
    reorder = not out_of_stock and distinct_low and available <= level.reorder_point
    low_stock = not out_of_stock and not reorder and available <= low_threshold
    overstock = level.maximum_stock is not None and level.on_hand > level.maximum_stock

    return [
        AlertCondition(AlertType.OUT_OF_STOCK, out_of_stock, 0, available, AlertPriority.HIGH),
        AlertCondition(AlertType.LOW_STOCK, low_stock, low_threshold, available, AlertPriority.MEDIUM),
        AlertCondition(AlertType.REORDER_POINT, reorder, level.reorder_point, available, AlertPriority.MEDIUM),
        AlertCondition(
            AlertType.OVERSTOCK,
            overstock,
            level.maximum_stock if level.maximum_stock is not None else 0,
            level.on_hand,
            AlertPriority.LOW,
        ),
    ]


# Allowed source statuses for each human transition
_ACKNOWLEDGE_FROM = (AlertStatus.ACTIVE, AlertStatus.SNOOZED)
_RESOLVE_FROM = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED, AlertStatus.SNOOZED)
_SNOOZE_FROM = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)
_CANCEL_FROM = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED, AlertStatus.SNOOZED)

# Re-evaluations allowed when the level keeps moving during one evaluation
_MAX_EVALUATION_PASSES = 5


class AlertEngine:
    """Threshold evaluation and alert lifecycle"""

    def __init__(
        self,
        repository: StockRepositoryProtocol,
        config: Optional[AlertConfig] = None,
        event_bus=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.config = config or AlertConfig()
        self.event_bus = event_bus
        self.clock = clock

    # ==================== Evaluation ====================

    async def evaluate(self, level: StockLevel, now: Optional[datetime] = None) -> List[StockAlert]:
        """
        Upsert alert records for a level; returns the records that changed.

        The snapshot a caller passes in may already be stale when another
        mutation on the same item swapped in between. The stored level is
        re-read before and after applying, and a newer version is evaluated
        again, so the last writer of the alert records always saw the latest
        level.
        """
        now = now or self.clock()
        changed: List[StockAlert] = []
        level = await self._latest(level)
        for _ in range(_MAX_EVALUATION_PASSES):
            changed.extend(await self._apply_level(level, now))
            latest = await self._latest(level)
            if latest.version == level.version:
                return changed
            logger.debug(
                f"{level.item_id}@{level.location_id} moved from v{level.version} to "
                f"v{latest.version} during alert evaluation, re-evaluating"
            )
            level = latest

        logger.warning(
            f"Alert evaluation for {level.item_id}@{level.location_id} stopped at v{level.version} "
            f"after {_MAX_EVALUATION_PASSES} passes"
        )
        return changed

    async def _latest(self, level: StockLevel) -> StockLevel:
        stored = await self.repository.get_stock_level(level.item_id, level.location_id)
        if stored is None or stored.version < level.version:
            return level
        return stored

    async def _apply_level(self, level: StockLevel, now: datetime) -> List[StockAlert]:
        changed = []
        for condition in evaluate_thresholds(level, self.config):
            existing = await self.repository.get_alert_by_key(
                level.item_id, level.location_id, condition.alert_type
            )
            if condition.active:
                updated, event_type = self._apply_active(level, existing, condition, now)
            else:
                updated, event_type = self._apply_cleared(existing, now)

            if updated is None or updated == existing:
                continue

            stored = await self.repository.upsert_alert(updated)
            changed.append(stored)
            if event_type is not None:
                logger.info(
                    f"Alert {stored.alert_type.value} for {stored.item_id}@{stored.location_id} "
                    f"-> {stored.status.value} (current={stored.current_value})"
                )
                await publish_alert_event(
                    self.event_bus, event_type, stored, self.config.channels_for(stored.alert_type)
                )
        return changed

    def _apply_active(
        self,
        level: StockLevel,
        existing: Optional[StockAlert],
        condition: AlertCondition,
        now: datetime,
    ) -> Tuple[Optional[StockAlert], Optional[InventoryEventType]]:
        values = {
            "threshold_value": condition.threshold_value,
            "current_value": condition.current_value,
            "priority": condition.priority,
        }

        if existing is None:
            alert = StockAlert(
                alert_id=f"alert_{uuid.uuid4().hex[:16]}",
                item_id=level.item_id,
                location_id=level.location_id,
                alert_type=condition.alert_type,
                status=AlertStatus.ACTIVE,
                condition_active=True,
                triggered_at=now,
                created_at=now,
                updated_at=now,
                **values,
            )
            return alert, InventoryEventType.ALERT_TRIGGERED

        reopen = (
            existing.status in (AlertStatus.RESOLVED, AlertStatus.CANCELLED)
            and not existing.condition_active
        ) or (
            existing.status == AlertStatus.SNOOZED
            and existing.snoozed_until is not None
            and existing.snoozed_until <= now
        )
        if reopen:
            alert = existing.model_copy(
                update={
                    **values,
                    "status": AlertStatus.ACTIVE,
                    "condition_active": True,
                    "triggered_at": now,
                    "snoozed_until": None,
                    "acknowledged_at": None,
                    "acknowledged_by": None,
                    "resolved_at": None,
                    "resolved_by": None,
                    "resolution_notes": None,
                    "updated_at": now,
                }
            )
            return alert, InventoryEventType.ALERT_REOPENED

        refreshed = existing.model_copy(update={**values, "condition_active": True})
        if refreshed == existing:
            return existing, None
        return refreshed.model_copy(update={"updated_at": now}), None

    def _apply_cleared(
        self, existing: Optional[StockAlert], now: datetime
    ) -> Tuple[Optional[StockAlert], Optional[InventoryEventType]]:
        if existing is None:
            return None, None

        if existing.is_open:
            alert = existing.model_copy(
                update={
                    "status": AlertStatus.RESOLVED,
                    "condition_active": False,
                    "snoozed_until": None,
                    "resolved_at": now,
                    "resolved_by": "system",
                    "resolution_notes": "condition cleared",
                    "updated_at": now,
                }
            )
            event_type = None if existing.status == AlertStatus.SNOOZED else InventoryEventType.ALERT_RESOLVED
            return alert, event_type

        if existing.condition_active:
            return existing.model_copy(update={"condition_active": False, "updated_at": now}), None

        return existing, None

    # ==================== Human Operations ====================

    async def get_alert(self, alert_id: str) -> StockAlert:
        alert = await self.repository.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found", alert_id=alert_id)
        return alert

    async def _transition(
        self,
        alert_id: str,
        target: AlertStatus,
        allowed_from: Tuple[AlertStatus, ...],
        updates: dict,
        event_type: InventoryEventType,
        actor_ref: str,
        notes: Optional[str] = None,
    ) -> StockAlert:
        alert = await self.get_alert(alert_id)
        if alert.status == target:
            return alert
        if alert.status not in allowed_from:
            raise InvalidAlertTransitionError(
                f"Alert {alert_id} cannot move from {alert.status.value} to {target.value}",
                alert_id=alert_id,
                status=alert.status.value,
                target=target.value,
            )

        stored = await self.repository.upsert_alert(
            alert.model_copy(update={"status": target, "updated_at": self.clock(), **updates})
        )
        logger.info(f"Alert {alert_id} {alert.status.value} -> {target.value} by {actor_ref}")
        await publish_alert_event(
            self.event_bus,
            event_type,
            stored,
            self.config.channels_for(stored.alert_type),
            actor_ref=actor_ref,
            notes=notes,
        )
        return stored

    async def acknowledge(self, alert_id: str, actor_ref: str) -> StockAlert:
        return await self._transition(
            alert_id,
            AlertStatus.ACKNOWLEDGED,
            _ACKNOWLEDGE_FROM,
            {"acknowledged_at": self.clock(), "acknowledged_by": actor_ref, "snoozed_until": None},
            InventoryEventType.ALERT_ACKNOWLEDGED,
            actor_ref,
        )

    async def resolve(self, alert_id: str, actor_ref: str, notes: Optional[str] = None) -> StockAlert:
        return await self._transition(
            alert_id,
            AlertStatus.RESOLVED,
            _RESOLVE_FROM,
            {
                "resolved_at": self.clock(),
                "resolved_by": actor_ref,
                "resolution_notes": notes,
                "snoozed_until": None,
            },
            InventoryEventType.ALERT_RESOLVED,
            actor_ref,
            notes,
        )

    async def snooze(self, alert_id: str, until: datetime, actor_ref: str) -> StockAlert:
        until = ensure_utc(until)
        if until <= self.clock():
            raise InvalidAlertTransitionError(
                f"Snooze time {until.isoformat()} is not in the future", alert_id=alert_id
            )
        return await self._transition(
            alert_id,
            AlertStatus.SNOOZED,
            _SNOOZE_FROM,
            {"snoozed_until": until},
            InventoryEventType.ALERT_SNOOZED,
            actor_ref,
        )

    async def cancel(self, alert_id: str, actor_ref: str, notes: Optional[str] = None) -> StockAlert:
        return await self._transition(
            alert_id,
            AlertStatus.CANCELLED,
            _CANCEL_FROM,
            {
                "resolved_at": self.clock(),
                "resolved_by": actor_ref,
                "resolution_notes": notes,
                "snoozed_until": None,
            },
            InventoryEventType.ALERT_CANCELLED,
            actor_ref,
            notes,
        )

    # ==================== Queries ====================

    async def list_alerts(self, filters: AlertFilter) -> List[StockAlert]:
        return await self.repository.list_alerts(filters)

    async def stats(self, filters: Optional[AlertFilter] = None) -> AlertStats:
        """Counts by type and status over the filtered alerts (pagination ignored)"""
        base = filters or AlertFilter()
        alerts: List[StockAlert] = []
        offset = 0
        while True:
            page = await self.repository.list_alerts(
                base.model_copy(update={"limit": 1000, "offset": offset})
            )
            alerts.extend(page)
            if len(page) < 1000:
                break
            offset += 1000

        return AlertStats(
            total=len(alerts),
            by_type=dict(Counter(alert.alert_type.value for alert in alerts)),
            by_status=dict(Counter(alert.status.value for alert in alerts)),
        )
