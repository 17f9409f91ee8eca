"""
Inventory Service Factory

Factory functions for creating the ledger with its collaborators.
create_stock_ledger is the ONLY place that imports the I/O-dependent
repository.

Usage:
    from .factory import create_stock_ledger
    ledger = await create_stock_ledger(settings, event_bus)
"""
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.config import InventoryConfig, get_settings
from core.config.inventory_config import AlertSettings

from .alert_engine import AlertEngine
from .concurrency import ConcurrencyGuard
from .models import AlertConfig, utc_now
from .movement_recorder import MovementRecorder
from .protocols import StockRepositoryProtocol
from .reservation_manager import ReservationManager
from .stock_ledger import StockLedger


def alert_config_from_settings(alerts: AlertSettings) -> AlertConfig:
    """Typed alert configuration from environment settings"""
    return AlertConfig(
        low_stock_threshold=alerts.low_stock_threshold,
        default_reorder_point=alerts.default_reorder_point,
        default_maximum_stock=alerts.default_maximum_stock,
        routing=dict(alerts.routing),
    )


def build_stock_ledger(
    repository: StockRepositoryProtocol,
    settings: Optional[InventoryConfig] = None,
    event_bus=None,
    alert_config: Optional[AlertConfig] = None,
    clock: Callable[[], datetime] = utc_now,
) -> StockLedger:
    """
    Wire a StockLedger around any repository implementation.

    Args:
        repository: Stock repository (real or mock)
        settings: Service configuration (defaults to global settings)
        event_bus: Event bus for publishing events
        alert_config: Overrides the alert settings from configuration
        clock: Time source for reservations and alerts

    Returns:
        StockLedger instance (repository not initialized)
    """
    settings = settings or get_settings()

    recorder = MovementRecorder(repository)
    guard = ConcurrencyGuard(
        repository,
        recorder,
        max_retries=settings.concurrency.max_retries,
        backoff_base_seconds=settings.concurrency.backoff_base_seconds,
        backoff_max_seconds=settings.concurrency.backoff_max_seconds,
    )
    reservations = ReservationManager(
        repository,
        guard,
        default_ttl=timedelta(minutes=settings.reservations.ttl_minutes),
        sweep_batch_size=settings.reservations.sweep_batch_size,
        event_bus=event_bus,
        clock=clock,
    )
    alerts = AlertEngine(
        repository,
        config=alert_config or alert_config_from_settings(settings.alerts),
        event_bus=event_bus,
        clock=clock,
    )
    return StockLedger(
        repository=repository,
        guard=guard,
        recorder=recorder,
        reservations=reservations,
        alerts=alerts,
        event_bus=event_bus,
        clock=clock,
    )


async def create_stock_ledger(
    settings: Optional[InventoryConfig] = None,
    event_bus=None,
) -> StockLedger:
    """
    Create StockLedger with the PostgreSQL repository.

    Use this in production, NOT in tests.
    """
    # Import real repository here (not at module level)
    from .stock_repository import StockRepository

    settings = settings or get_settings()
    repository = StockRepository(config=settings.infra)
    ledger = build_stock_ledger(repository, settings=settings, event_bus=event_bus)
    await ledger.initialize()
    return ledger
