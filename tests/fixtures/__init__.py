"""
Shared Test Fixtures

Centralized factories used across all test layers.

Structure:
    - common.py: Base ID generators, fake clock
    - inventory_fixtures.py: Inventory ledger factories
"""

# Common utilities
from .common import (
    FakeClock,
    make_holder_ref,
    make_item_id,
    make_location_id,
)

# Inventory fixtures
from .inventory_fixtures import (
    make_alert,
    make_movement,
    make_register_request,
    make_reservation,
    make_reservation_id,
    make_reserve_request,
    make_stock_level,
    make_test_settings,
)
