#!/usr/bin/env python3
"""
Core Module for the Inventory Ledger

Shared infrastructure components used by the inventory microservice.

COMPONENTS:
    - config/: Environment-driven configuration (infra, logging, inventory settings)
    - logger.py: Service logger setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config import settings
    from core.logger import setup_service_logger

    logger = setup_service_logger(settings.service_name, settings.logging)
"""

__version__ = "1.0.0"
