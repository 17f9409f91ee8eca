"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── inventory/   Ledger, reservations, alerts, events, API
    └── mocks/       Mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/inventory -v
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from microservices.inventory_service.factory import build_stock_ledger
from tests.component.mocks import MockEventBus, MockStockRepository


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )


# =============================================================================
# Repository / Event Bus Mocks
# =============================================================================

@pytest.fixture
def mock_repo() -> MockStockRepository:
    """Fresh in-memory stock repository"""
    return MockStockRepository()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Mock NATS event bus"""
    return MockEventBus()


# =============================================================================
# Ledger
# =============================================================================

@pytest.fixture
def ledger(mock_repo, mock_event_bus, test_settings, clock):
    """StockLedger wired around the mocks"""
    return build_stock_ledger(
        mock_repo,
        settings=test_settings,
        event_bus=mock_event_bus,
        clock=clock,
    )
