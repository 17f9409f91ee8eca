#!/usr/bin/env python3
"""Modular configuration system for the inventory ledger

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- logging_config: Logging configuration
- inventory_config: Reservation TTL, sweep, concurrency and alert settings
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .inventory_config import (
    InventoryConfig,
    AlertSettings,
    ReservationSettings,
    ConcurrencySettings,
)

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = InventoryConfig.from_env()

def get_settings() -> InventoryConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> InventoryConfig:
    """Reload settings from environment"""
    global settings
    settings = InventoryConfig.from_env()
    return settings

__all__ = [
    # Main config
    'InventoryConfig',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'InfraConfig',
    'AlertSettings',
    'ReservationSettings',
    'ConcurrencySettings',
]
