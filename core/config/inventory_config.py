#!/usr/bin/env python3
"""Inventory ledger configuration

Reservation, concurrency and alert settings for the inventory service.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .infra_config import InfraConfig
from .logging_config import LoggingConfig


def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _optional_int(val: Optional[str]) -> Optional[int]:
    if val is None or val.strip() == "":
        return None
    try:
        return int(val)
    except ValueError:
        return None

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default

def _channels(val: str) -> List[str]:
    return [channel.strip() for channel in val.split(",") if channel.strip()]


ALERT_TYPES = ("low_stock", "out_of_stock", "reorder_point", "overstock")

DEFAULT_ALERT_ROUTES: Dict[str, str] = {
    "out_of_stock": "email,webhook",
    "low_stock": "email",
    "reorder_point": "email",
    "overstock": "webhook",
}


@dataclass
class AlertSettings:
    """Alert thresholds and per-type notification routing"""
    low_stock_threshold: Optional[int] = None
    default_reorder_point: int = 10
    default_maximum_stock: Optional[int] = None
    routing: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'AlertSettings':
        routing = {
            alert_type: _channels(
                os.getenv(f"ALERT_ROUTE_{alert_type.upper()}", DEFAULT_ALERT_ROUTES[alert_type])
            )
            for alert_type in ALERT_TYPES
        }
        return cls(
            low_stock_threshold=_optional_int(os.getenv("ALERT_LOW_STOCK_THRESHOLD")),
            default_reorder_point=_int(os.getenv("ALERT_DEFAULT_REORDER_POINT", "10"), 10),
            default_maximum_stock=_optional_int(os.getenv("ALERT_DEFAULT_MAXIMUM_STOCK")),
            routing=routing,
        )


@dataclass
class ReservationSettings:
    """Reservation TTL and expiry sweep settings"""
    ttl_minutes: int = 15
    sweep_enabled: bool = True
    sweep_interval_seconds: float = 60.0
    sweep_batch_size: int = 500

    @classmethod
    def from_env(cls) -> 'ReservationSettings':
        return cls(
            ttl_minutes=_int(os.getenv("RESERVATION_TTL_MINUTES", "15"), 15),
            sweep_enabled=_bool(os.getenv("RESERVATION_SWEEP_ENABLED", "true")),
            sweep_interval_seconds=_float(os.getenv("RESERVATION_SWEEP_INTERVAL_SECONDS", "60"), 60.0),
            sweep_batch_size=_int(os.getenv("RESERVATION_SWEEP_BATCH_SIZE", "500"), 500),
        )


@dataclass
class ConcurrencySettings:
    """Optimistic concurrency retry policy for stock level writes"""
    max_retries: int = 5
    backoff_base_seconds: float = 0.01
    backoff_max_seconds: float = 0.25

    @classmethod
    def from_env(cls) -> 'ConcurrencySettings':
        return cls(
            max_retries=_int(os.getenv("STOCK_CAS_MAX_RETRIES", "5"), 5),
            backoff_base_seconds=_float(os.getenv("STOCK_CAS_BACKOFF_BASE_SECONDS", "0.01"), 0.01),
            backoff_max_seconds=_float(os.getenv("STOCK_CAS_BACKOFF_MAX_SECONDS", "0.25"), 0.25),
        )


@dataclass
class InventoryConfig:
    """Main configuration for the inventory ledger service"""
    service_name: str = "inventory_service"
    service_port: int = 8252
    environment: str = "development"
    debug: bool = False

    infra: InfraConfig = field(default_factory=InfraConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reservations: ReservationSettings = field(default_factory=ReservationSettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)

    @property
    def is_testing(self) -> bool:
        return self.environment in ("testing", "test")

    @classmethod
    def from_env(cls) -> 'InventoryConfig':
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            service_name=os.getenv("SERVICE_NAME", "inventory_service"),
            service_port=_int(os.getenv("PORT", "8252"), 8252),
            environment=env,
            debug=_bool(os.getenv("DEBUG", "false")),
            infra=InfraConfig.from_env(),
            logging=LoggingConfig.from_env(),
            reservations=ReservationSettings.from_env(),
            concurrency=ConcurrencySettings.from_env(),
            alerts=AlertSettings.from_env(),
        )
