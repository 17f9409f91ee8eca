"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (PostgreSQL repository, NATS).
"""

from .nats_mock import MockEventBus
from .stock_repository_mock import MockStockRepository, unavailable

__all__ = [
    'MockEventBus',
    'MockStockRepository',
    'unavailable',
]
